#!/usr/bin/env python3
"""
Dispatch Strategies Example

Runs one code review under three strategies:
- parallel: every provider answers, consensus picks the decision
- sequential: a plan phase feeds a review phase
- hierarchical: a coordinator splits the work for the other providers
- review team: both providers registered as one multi-agent provider

Prerequisites:
    export OPENAI_API_KEY="your-key-here"
    export OPENROUTER_API_KEY="your-key-here"

Usage:
    python examples/review_strategies.py
"""

import asyncio
import os

from task_orchestra import Orchestra, OrchestraConfig, StrategyAssessment, build_request
from task_orchestra.protocol.types import ConsensusMode, ExecutionPhase, ProviderRecommendation
from task_orchestra.providers import MultiAgentAdapter
from task_orchestra.providers.openai_compat import ChatCompletionsAdapter, OpenRouterAdapter

CODE = '''
def transfer_money(from_account, to_account, amount):
    from_account.balance -= amount
    to_account.balance += amount
    save_accounts(from_account, to_account)
'''

PROVIDERS = ["openai", "openrouter"]


def review_team(name):
    """Factory for a provider that asks both APIs and keeps the byzantine consensus."""
    return MultiAgentAdapter(
        name,
        members=[ChatCompletionsAdapter("openai"), OpenRouterAdapter("openrouter")],
        consensus_mode=ConsensusMode.BYZANTINE,
    )


def show(result):
    status = "✓" if result.success else "✗"
    print(f"{status} {result.strategy_used}: {len(result.results)} response(s)")
    for response in result.results:
        print(f"  - {response.provider.name} [{response.status.value}] {response.id}")
    if result.consensus:
        print(f"  Consensus confidence: {result.consensus.confidence:.2f}")
        print(f"\n{result.consensus.decision.content[:400]}")
    print(f"  Duration: {result.performance.total_duration_ms}ms")


async def main():
    missing = [var for var in ("OPENAI_API_KEY", "OPENROUTER_API_KEY") if not os.getenv(var)]
    if missing:
        print(f"Error: {', '.join(missing)} not set")
        return

    config = OrchestraConfig(providers=PROVIDERS, auto_validate=True)
    async with Orchestra(config) as orchestra:
        request = build_request(
            f"Review this code for bugs and security issues:\n\n{CODE}",
            "code",
            strategy="validation",
        )

        print("\n[1] Parallel review")
        print("-" * 70)
        show(await orchestra.run(request))

        print("\n[2] Plan, then review")
        print("-" * 70)
        sequential = StrategyAssessment(
            approach="sequential",
            phases=[
                ExecutionPhase(name="plan", provider="openai", description="List what to check"),
                ExecutionPhase(name="review", provider="openrouter"),
            ],
        )
        show(await orchestra.run(request, sequential))

        print("\n[3] Coordinated review")
        print("-" * 70)
        hierarchical = StrategyAssessment(
            approach="hierarchical",
            coordinator="openai",
            recommendations=[ProviderRecommendation(provider=name) for name in PROVIDERS],
        )
        result = await orchestra.run(request, hierarchical)
        show(result)
        print(f"  Mode: {result.metadata.hierarchical_mode}")

        print("\n[4] Review team")
        print("-" * 70)
        orchestra.registry.register_factory("team", review_team)
        result = await orchestra.run(
            request,
            StrategyAssessment(recommendations=[ProviderRecommendation(provider="team")]),
        )
        show(result)
        print(f"\n{result.results[0].result.content[:400]}")


if __name__ == "__main__":
    asyncio.run(main())
