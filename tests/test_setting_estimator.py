"""Tests for the setting inference engine."""

import math

import pytest

from analysis.setting_estimator import (
    PROB_EPS,
    avg_prob,
    binom_loglik,
    build_weights,
    delta_score,
    infer,
    normalize_stats,
    safe_prob,
    score_settings,
    softmax_log_weights,
)
from config.machines import MACHINES, UnknownMachineError, build_catalog


# ── Likelihood kernel ────────────────────────────────────

class TestBinomLogLik:

    def test_basic_value(self):
        expected = 3 * math.log(0.1) + 7 * math.log(0.9)
        assert binom_loglik(10, 3, 0.1) == pytest.approx(expected)

    def test_count_clamped_to_trials(self):
        assert binom_loglik(5, 9, 0.2) == pytest.approx(binom_loglik(5, 5, 0.2))

    def test_negative_count_is_zero(self):
        assert binom_loglik(5, -3, 0.2) == pytest.approx(5 * math.log(0.8))

    def test_zero_trials(self):
        assert binom_loglik(0, 0, 0.3) == 0

    def test_extreme_probability_stays_finite(self):
        assert math.isfinite(binom_loglik(100, 50, 0.0))
        assert math.isfinite(binom_loglik(100, 50, 1.0))

    def test_peaks_at_observed_rate(self):
        lls = [binom_loglik(1000, 200, p) for p in (0.1, 0.15, 0.2, 0.25, 0.3)]
        assert max(lls) == lls[2]


class TestSafeProb:

    @pytest.mark.parametrize('denom', [0, -5, float('inf'), float('nan'), None, 'x'])
    def test_invalid_denominators(self, denom):
        assert safe_prob(denom) == PROB_EPS

    def test_regular(self):
        assert safe_prob(4) == 0.25

    def test_below_one_is_clamped(self):
        assert safe_prob(0.5) == 1 - PROB_EPS


# ── Weight builder ───────────────────────────────────────

class TestWeights:

    def test_delta_score(self):
        assert delta_score([400, 350, 300, 250, 220, 200]) == pytest.approx(math.log(2))

    def test_delta_score_invalid(self):
        assert delta_score([0, 1, 1, 1, 1, 1]) == 0
        assert delta_score([100, 1, 1, 1, 1, -2]) == 0

    def test_avg_prob(self):
        assert avg_prob([2, 2, 4, 4, 4, 4]) == pytest.approx((0.5 * 2 + 0.25 * 4) / 6)

    @pytest.mark.parametrize('games', [0, 1, 500, 8000, 100000])
    def test_bounds_on_real_catalog(self, games):
        for machine in MACHINES.values():
            weights = build_weights(machine['odds'], games)
            assert set(weights) == set(machine['odds'])
            for metric, w in weights.items():
                lo = 0.60 if metric == 'grape' else 0.05
                assert lo <= w <= 3.0

    def test_grape_floor(self):
        weights = build_weights({'grape': [6.0, 6.0, 6.0, 6.0, 6.0, 6.0]}, 1000)
        assert weights['grape'] == 0.60

    def test_flat_metric_floor(self):
        weights = build_weights({'cherry_big': [1000.0] * 6}, 1000)
        assert weights['cherry_big'] == 0.05

    def test_ceiling(self):
        weights = build_weights({'single_reg': [10000.0, 1, 1, 1, 1, 10.0]}, 1000)
        assert weights['single_reg'] == 3.0

    def test_total_metric_damped(self):
        table = [800.0, 700.0, 600.0, 500.0, 400.0, 200.0]
        weights = build_weights({'single_big': table, 'total_big': table}, 1000)
        assert weights['total_big'] == pytest.approx(weights['single_big'] * 0.40)

    def test_efficiency_factor_range(self):
        # grape has the most expected hits, so its factor is 1.0
        odds = {
            'grape': [6.0, 5.9, 5.8, 5.7, 5.6, 3.0],
            'single_reg': [800.0, 700.0, 600.0, 500.0, 400.0, 200.0],
        }
        weights = build_weights(odds, 5000)
        assert weights['grape'] == pytest.approx(math.log(2))
        reg_factor = weights['single_reg'] / math.log(4)
        assert 0.6 <= reg_factor < 1.0

    def test_zero_games_uses_floor_factor(self):
        odds = {'single_reg': [800.0, 700.0, 600.0, 500.0, 400.0, 200.0]}
        assert build_weights(odds, 0)['single_reg'] == pytest.approx(math.log(4) * 0.6)

    def test_absent_or_short_tables_skipped(self):
        weights = build_weights({'grape': [6.0] * 6, 'single_reg': [500.0, 400.0]}, 1000)
        assert 'single_reg' not in weights


# ── Normalizer ───────────────────────────────────────────

class TestSoftmax:

    def test_large_magnitudes(self):
        post = softmax_log_weights([-10000.0, -10001.0, -10002.0, -1e6, -1e6, -1e6])
        assert sum(post) == pytest.approx(1.0)
        assert post[0] > post[1] > post[2]

    def test_all_negative_infinity_is_uniform(self):
        post = softmax_log_weights([float('-inf')] * 6)
        assert post == [1 / 6] * 6

    def test_equal_scores_uniform(self):
        assert softmax_log_weights([0.0] * 6) == pytest.approx([1 / 6] * 6)


# ── Observation bundle ───────────────────────────────────

def test_normalize_stats_coerces_bad_values():
    st = normalize_stats({'seg_games': -5, 'grapes': float('nan'), 'big_single': '7',
                          'reg_single': 2.9, 'diff': 'abc'})
    assert st['seg_games'] == 0
    assert st['grapes'] == 0
    assert st['big_single'] == 7
    assert st['reg_single'] == 2
    assert st['diff'] is None
    assert st['total_games'] == 0


def test_score_skips_totals_without_total_games():
    catalog = build_catalog([{
        'id': 'T',
        'odds': {'total_big': [300.0, 290.0, 280.0, 270.0, 260.0, 250.0]},
    }])
    odds = catalog['T']['odds']
    weights = build_weights(odds, 0)
    st = normalize_stats({'total_big': 50})
    assert score_settings(odds, weights, st) == [0.0] * 6


# ── infer() ──────────────────────────────────────────────

class TestInfer:

    def test_posterior_is_distribution(self, sample_stats):
        for machine_id in MACHINES:
            result = infer(machine_id, sample_stats)
            post = result['posterior']
            assert len(post) == 6
            assert all(0 <= p <= 1 for p in post)
            assert sum(post) == pytest.approx(1.0, abs=1e-9)
            assert 1 <= result['expected_setting'] <= 6

    def test_aggregates(self, sample_stats):
        result = infer('MYJUG', sample_stats)
        post = result['posterior']
        assert result['p4plus'] == pytest.approx(post[3] + post[4] + post[5])
        assert result['p56'] == pytest.approx(post[4] + post[5])
        assert result['p4plus'] >= result['p56']
        expected = sum((i + 1) * p for i, p in enumerate(post))
        assert result['expected_setting'] == pytest.approx(expected)
        assert post[result['map_setting'] - 1] == max(post)

    def test_all_zero_bundle_is_uniform(self):
        result = infer('MYJUG', {})
        assert result['posterior'] == pytest.approx([1 / 6] * 6)
        assert result['expected_setting'] == pytest.approx(3.5)
        assert result['map_setting'] == 1
        assert 'grape_odds_from_diff' not in result
        assert 'grape_coins_from_diff' not in result

    def test_setting4_counts(self, two_metric_catalog):
        stats = {'seg_games': 1000, 'grapes': 160, 'reg_single': 4}
        result = infer('TWO', stats, catalog=two_metric_catalog)
        post = result['posterior']
        assert result['map_setting'] == 4
        assert post.index(max(post)) == 3
        assert result['p4plus'] > 0.5

    def test_more_grapes_raise_high_settings(self):
        base = {'seg_games': 2000, 'grapes': 330, 'reg_single': 4, 'big_single': 5}
        prev = infer('MYJUG', base)['p56']
        for grapes in (340, 350, 360, 380):
            cur = infer('MYJUG', dict(base, grapes=grapes))['p56']
            assert cur > prev
            prev = cur

    def test_weights_do_not_depend_on_counts(self):
        a = infer('MYJUG', {'seg_games': 2000, 'grapes': 300})
        b = infer('MYJUG', {'seg_games': 2000, 'grapes': 400})
        assert a['weights_used'] == b['weights_used']

    def test_idempotent(self, sample_stats):
        assert infer('FUNKY', sample_stats) == infer('FUNKY', sample_stats)

    def test_unknown_machine(self, sample_stats):
        with pytest.raises(UnknownMachineError):
            infer('NOPE', sample_stats)

    def test_sparse_machine_ignores_missing_metrics(self):
        base = {'seg_games': 3000, 'grapes': 490, 'reg_single': 8}
        a = infer('GOGO', base)
        b = infer('GOGO', dict(base, big_single=40, non_overlap_cherries=200))
        assert a['posterior'] == b['posterior']
        assert 'single_big' not in a['weights_used']

    def test_cumulative_totals_used_only_with_total_games(self):
        base = {'seg_games': 1000, 'grapes': 172, 'total_big': 30, 'total_reg': 30}
        without = infer('MYJUG', base)
        with_totals = infer('MYJUG', dict(base, total_games=6000))
        assert without['posterior'] != with_totals['posterior']
        assert with_totals['p56'] > without['p56']

    def test_negative_counts_coerced(self):
        a = infer('IM', {'seg_games': 1000, 'grapes': -10, 'reg_single': -1})
        b = infer('IM', {'seg_games': 1000})
        assert a['posterior'] == b['posterior']

    def test_diff_reverse_estimate(self, sample_stats):
        result = infer('MYJUG', sample_stats)
        assert result['grape_odds_from_diff'] > 0
        assert result['grape_coins_from_diff'] > 0

    def test_diff_nonpositive_coins_omits_rate(self):
        stats = {'seg_games': 1000, 'big_single': 10, 'diff': -2000}
        result = infer('MYJUG', stats)
        assert 'grape_odds_from_diff' not in result
        assert result['grape_coins_from_diff'] <= 0

    def test_weights_rounded(self, sample_stats):
        for v in infer('MYJUG', sample_stats)['weights_used'].values():
            assert round(v, 3) == v
