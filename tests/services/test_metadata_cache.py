import asyncio
import unittest

from chat_stream_runtime.models import ServiceMetadata
from chat_stream_runtime.services.metadata_cache import MetadataCache


def _metadata(agent: str = "chatbot") -> ServiceMetadata:
    return ServiceMetadata(agents=(), models=("gpt",), default_agent=agent, default_model="gpt")


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class MetadataCacheTests(unittest.TestCase):
    def test_entries_expire_after_ttl(self) -> None:
        clock = _Clock()
        cache = MetadataCache(ttl_seconds=300, clock=clock)
        cache.set("http://svc", _metadata())

        clock.now = 299.0
        self.assertIsNotNone(cache.get("http://svc"))
        clock.now = 300.0
        self.assertIsNone(cache.get("http://svc"))

    def test_invalidate_and_clear(self) -> None:
        cache = MetadataCache()
        cache.set("a", _metadata())
        cache.set("b", _metadata())
        cache.invalidate("a")
        self.assertIsNone(cache.get("a"))
        self.assertIsNotNone(cache.get("b"))
        cache.clear()
        self.assertIsNone(cache.get("b"))

    def test_concurrent_callers_share_one_fetch(self) -> None:
        calls = 0

        async def fetch() -> ServiceMetadata:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return _metadata()

        async def run() -> list[ServiceMetadata]:
            cache = MetadataCache()
            results = await asyncio.gather(*(cache.get_or_fetch("k", fetch) for _ in range(5)))
            results.append(await cache.get_or_fetch("k", fetch))
            return results

        results = asyncio.run(run())
        self.assertEqual(1, calls)
        self.assertTrue(all(r is results[0] for r in results))

    def test_force_refetches(self) -> None:
        agents = iter(["first", "second"])

        async def fetch() -> ServiceMetadata:
            return _metadata(next(agents))

        async def run() -> tuple[ServiceMetadata, ServiceMetadata]:
            cache = MetadataCache()
            first = await cache.get_or_fetch("k", fetch)
            second = await cache.get_or_fetch("k", fetch, force=True)
            return first, second

        first, second = asyncio.run(run())
        self.assertEqual("first", first.default_agent)
        self.assertEqual("second", second.default_agent)

    def test_failed_fetch_propagates_and_is_not_cached(self) -> None:
        attempts = 0

        async def fetch() -> ServiceMetadata:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("unavailable")
            return _metadata()

        async def run() -> ServiceMetadata:
            cache = MetadataCache()
            with self.assertRaises(RuntimeError):
                await cache.get_or_fetch("k", fetch)
            return await cache.get_or_fetch("k", fetch)

        self.assertEqual("chatbot", asyncio.run(run()).default_agent)
        self.assertEqual(2, attempts)


if __name__ == "__main__":
    unittest.main()
