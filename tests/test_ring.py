import random

from cachewatch.models import Sample, WindowSums
from cachewatch.retention import SampleBuffer
from cachewatch.ring import WINDOW_MINUTES, MinuteRing


def _sample(
    minute: "int",
    denom: "int" = 100,
    read: "int" = 10,
    create: "int" = 1,
) -> "Sample":
    return Sample(
        minute=minute,
        denom_tokens=denom,
        cache_read_tokens=read,
        cache_create_tokens=create,
    )


class TestMinuteRing:
    def test_accumulates_same_minute(self) -> "None":
        ring = MinuteRing()
        ring.add(_sample(1000))
        ring.add(_sample(1000, denom=50, read=5, create=0))

        sums = ring.sum_range(1000, 1000)
        assert sums == WindowSums(
            denom_tokens=150,
            cache_read_tokens=15,
            cache_create_tokens=1,
            success_requests=2,
        )

    def test_range_is_inclusive(self) -> "None":
        ring = MinuteRing()
        for minute in (10, 11, 12, 13):
            ring.add(_sample(minute))

        assert ring.sum_range(11, 12).success_requests == 2
        assert ring.sum_range(10, 13).success_requests == 4
        assert ring.sum_range(14, 20).success_requests == 0

    def test_empty_ring_sums_to_zero(self) -> "None":
        assert MinuteRing().sum_range(-100, 100) == WindowSums()

    def test_reused_slot_drops_previous_lap(self) -> "None":
        ring = MinuteRing()
        ring.add(_sample(500, denom=1000, read=900))
        # same slot, one lap later
        ring.add(_sample(500 + WINDOW_MINUTES, denom=10, read=1))

        sums = ring.sum_range(501, 500 + WINDOW_MINUTES)
        assert sums.denom_tokens == 10
        assert sums.cache_read_tokens == 1
        assert sums.success_requests == 1
        # the overwritten minute is gone entirely
        assert ring.sum_range(500, 500) == WindowSums()

    def test_stale_slots_excluded_from_window(self) -> "None":
        ring = MinuteRing()
        ring.add(_sample(100))
        ring.add(_sample(130))

        # minute 100 is still tagged in its slot but outside the range
        assert ring.sum_range(101, 160).success_requests == 1


class TestRingMatchesRawSamples:
    def test_random_sequences(self) -> "None":
        rng = random.Random(1234)

        for _ in range(20):
            ring = MinuteRing()
            samples = SampleBuffer()
            minute = rng.randint(0, 10_000)

            for _ in range(rng.randint(1, 400)):
                minute += rng.choice((0, 0, 0, 1, 1, 2, 5))
                sample = _sample(
                    minute,
                    denom=rng.randint(1, 5000),
                    read=rng.randint(0, 3000),
                    create=rng.randint(0, 500),
                )
                ring.add(sample)
                samples.append(sample)

            now = minute
            # every window the ring can still answer for
            for _ in range(50):
                start = rng.randint(now - WINDOW_MINUTES + 1, now)
                end = rng.randint(start, now)
                assert ring.sum_range(start, end) == samples.sum_range(start, end)


class TestSampleBuffer:
    def test_prune_keeps_inclusive_bound(self) -> "None":
        samples = SampleBuffer()
        for minute in (1, 2, 3, 4):
            samples.append(_sample(minute))

        dropped = samples.prune(3)
        assert dropped == 2
        assert [s.minute for s in samples] == [3, 4]

    def test_prune_everything(self) -> "None":
        samples = SampleBuffer()
        samples.append(_sample(1))
        assert samples.prune(10) == 1
        assert len(samples) == 0

    def test_sum_range(self) -> "None":
        samples = SampleBuffer()
        samples.append(_sample(1, denom=10, read=1, create=0))
        samples.append(_sample(2, denom=20, read=2, create=3))
        samples.append(_sample(3, denom=40, read=4, create=0))

        sums = samples.sum_range(2, 3)
        assert sums == WindowSums(
            denom_tokens=60,
            cache_read_tokens=6,
            cache_create_tokens=3,
            success_requests=2,
        )
