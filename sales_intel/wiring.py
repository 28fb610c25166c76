"""Builds the job stack (store, agent, runner, retry wrapper) from config.

Shared by the HTTP server and the CLI so both run jobs the same way.
"""

from __future__ import annotations

from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel

from sales_intel.agent import IntelligenceAgent, ToolBackends, build_default_backends, build_llm
from sales_intel.config import CONFIG_CACHE_TTL_SECONDS, DATABASE_URL
from sales_intel.context import EntityContextResolver
from sales_intel.jobs.config_provider import AgentConfigProvider
from sales_intel.jobs.models import init_db, make_engine, make_session_factory
from sales_intel.jobs.retry import RetryingJobRunner
from sales_intel.jobs.runner import JobRunner
from sales_intel.jobs.store import JobStore


@dataclass
class JobStack:
    store: JobStore
    config_provider: AgentConfigProvider
    runner: JobRunner
    retrying_runner: RetryingJobRunner


def build_job_stack(
    database_url: str = DATABASE_URL,
    *,
    llm: BaseChatModel | None = None,
    backends: ToolBackends | None = None,
) -> JobStack:
    engine = make_engine(database_url)
    init_db(engine)
    store = JobStore(make_session_factory(engine))
    backends = backends or build_default_backends()

    config_provider = AgentConfigProvider(store.get_agent_config, CONFIG_CACHE_TTL_SECONDS)
    runner = JobRunner(
        store,
        IntelligenceAgent(llm or build_llm(), backends),
        EntityContextResolver(backends.crm_rest),
        config_provider,
    )
    return JobStack(
        store=store,
        config_provider=config_provider,
        runner=runner,
        retrying_runner=RetryingJobRunner(runner, store),
    )
