"""
Agent Runtime - composes the collaborators and owns the graph lifecycle.

Example:
    runtime = AgentRuntime(RuntimeConfig(), generator=MockTextGenerator(...))
    await runtime.start()
    state = await runtime.handle_message("thread-1", "Summarize yesterday's logs")
    print(state.response)
    await runtime.stop()
"""

import asyncio
import logging

from plangraph.config import RuntimeConfig
from plangraph.graph.builder import create_default_graph
from plangraph.graph.executor import WorkflowGraph
from plangraph.graph.state import ThreadState
from plangraph.llm.litellm import LiteLLMGenerator
from plangraph.llm.provider import TextGenerator
from plangraph.nodes import NodeDependencies
from plangraph.runtime.abort import AbortSignal
from plangraph.runtime.event_bus import EventBus
from plangraph.runtime.thread import ConversationThread
from plangraph.services.awareness import AwarenessService
from plangraph.storage.plan_store import FilePlanStore, PlanStore
from plangraph.tools.registry import StepExecutor, ToolRegistry

logger = logging.getLogger(__name__)


class AgentRuntime:
    """
    Top-level runtime: one graph shared by every thread, one
    ConversationThread per thread id.
    """

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        generator: TextGenerator | None = None,
        tools: StepExecutor | None = None,
        store: PlanStore | None = None,
        event_bus: EventBus | None = None,
        awareness: AwarenessService | None = None,
        include_awareness: bool = False,
    ):
        self.config = config or RuntimeConfig()
        self.generator = generator or LiteLLMGenerator(
            model=self.config.model,
            api_key=self.config.api_key,
            api_base=self.config.api_base,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.graph.llm_timeout_seconds,
        )
        self.tools = tools if tools is not None else ToolRegistry()
        self.store = store or FilePlanStore(self.config.storage_path)
        self.event_bus = event_bus or EventBus()
        self.awareness = awareness or AwarenessService()

        self.deps = NodeDependencies(
            generator=self.generator,
            store=self.store,
            tools=self.tools,
            event_bus=self.event_bus,
            awareness=self.awareness,
            config=self.config.graph,
        )
        self.graph: WorkflowGraph = create_default_graph(
            self.deps, include_awareness=include_awareness
        )

        self._threads: dict[str, ConversationThread] = {}
        self._running = False
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        async with self._lock:
            await self.graph.initialize()
            self._running = True
            logger.info(f"AgentRuntime started (model: {self.config.model})")

    async def stop(self) -> None:
        if not self._running:
            return
        async with self._lock:
            for thread in self._threads.values():
                thread.cancel("Runtime shutting down")
            await self.graph.destroy()
            await self.generator.close()
            await self.store.close()
            self._running = False
            logger.info("AgentRuntime stopped")

    def get_thread(self, thread_id: str) -> ConversationThread:
        thread = self._threads.get(thread_id)
        if thread is None:
            thread = ConversationThread(thread_id, self.graph)
            self._threads[thread_id] = thread
        return thread

    def list_threads(self) -> list[str]:
        return sorted(self._threads)

    async def handle_message(
        self, thread_id: str, text: str, abort: AbortSignal | None = None
    ) -> ThreadState:
        """
        Route one inbound message to its thread.

        Raises:
            RuntimeError: the runtime has not been started
        """
        if not self._running:
            raise RuntimeError("AgentRuntime is not running")
        return await self.get_thread(thread_id).handle_message(text, abort=abort)
