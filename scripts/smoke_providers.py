# scripts/smoke_providers.py
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# Resolve .env relative to the repo root so this script works from any cwd.
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from llmrouter.config import Settings  # noqa: E402
from llmrouter.errors import ProviderError  # noqa: E402
from llmrouter.providers import SupportsModelListing  # noqa: E402
from llmrouter.registry import ProviderRegistry, register_default_factories  # noqa: E402

PROMPT = "Say 'Hello from the router!' in one sentence."


async def smoke_provider(registry: ProviderRegistry, name: str) -> bool:
    """Stream one short answer from *name* and report the outcome."""
    provider = registry.get_provider(name)
    if provider is None:
        print(f"⏭️  Skipping {name} (disabled)")
        return True

    print(f"\n🧪 Testing {name} ({provider.provider_type})...")
    try:
        if isinstance(provider, SupportsModelListing):
            models = await provider.list_models()
            print(f"   Models: {', '.join(models[:5]) or '(none)'}")
        print("   Response: ", end="")
        async for delta in provider.stream_response(PROMPT, []):
            print(delta, end="", flush=True)
        print(f"\n   ✅ {name} working!")
        return True
    except ProviderError as exc:
        print(f"\n   ❌ {type(exc).__name__}:\n{exc.get_user_message()}")
        return False


async def main() -> int:
    print("=" * 60)
    print("Provider Smoke Test")
    print("=" * 60)

    registry = register_default_factories(ProviderRegistry())
    for config in Settings().provider_configurations():
        try:
            registry.register_provider(config.name, config)
        except ProviderError as exc:
            print(f"⏭️  Skipping {config.name}: {exc.get_user_message()}")

    results = [await smoke_provider(registry, name) for name in registry.list_providers()]
    await registry.aclose()

    print("\n" + "=" * 60)
    print("Testing complete!")
    print("=" * 60)
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
