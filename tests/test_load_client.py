from wristpass.load_client import Result, Stats, check_no_double_sale


def _stats(*outcomes):
    stats = Stats()
    for outcome, tickets in outcomes:
        stats.add(Result(outcome=outcome, tickets=tickets, t_total=0.1))
    return stats


class TestStats:
    def test_summary_counts_outcomes(self):
        stats = _stats(("PAID", 2), ("PAID", 2), ("SOLD_OUT", 0),
                       ("FAILED", 0))
        stats.add(Result(outcome="ERROR", err="HTTP 500: boom"))

        s = stats.summary()

        assert s["total"] == 5
        assert s["paid"] == 2
        assert s["sold_out"] == 1
        assert s["failed"] == 1
        assert s["error"] == 1
        assert s["tickets"] == 4
        assert s["p50_s"] == 0.1

    def test_empty_summary(self):
        s = Stats().summary()
        assert s["total"] == 0
        assert s["avg_s"] == 0.0


class TestNoDoubleSale:
    def test_consistent_run(self):
        stats = _stats(("PAID", 1), ("PAID", 1), ("PENDING", 0),
                       ("SOLD_OUT", 0))
        assert check_no_double_sale(stats, before=3, after=0, quantity=1)

    def test_oversold(self):
        stats = _stats(("PAID", 2), ("PAID", 2))
        assert not check_no_double_sale(stats, before=3, after=0, quantity=2)

    def test_units_unaccounted_for(self):
        # two sold but only one unit left the pool
        stats = _stats(("PAID", 1), ("PAID", 1))
        assert not check_no_double_sale(stats, before=5, after=4, quantity=1)
