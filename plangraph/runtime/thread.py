"""
Conversation Thread - one conversation's state plus its serialized graph runs.

A second message for the same thread waits until the current run finishes,
so state mutations from two runs never interleave.
"""

import asyncio
import logging
import uuid

from plangraph.graph.executor import WorkflowGraph
from plangraph.graph.state import MessageRole, ThreadState
from plangraph.observability import clear_trace_context, set_trace_context
from plangraph.runtime.abort import AbortSignal

logger = logging.getLogger(__name__)


def fallback_response(state: ThreadState) -> str:
    """Human-readable reply for runs that ended without one."""
    if state.run.stop_reason:
        return f"I stopped before finishing: {state.run.stop_reason}"
    if state.run.error:
        return f"Something went wrong: {state.run.error}"
    return "I have nothing further to add."


class ConversationThread:
    def __init__(self, thread_id: str, graph: WorkflowGraph, state: ThreadState | None = None):
        self.thread_id = thread_id
        self.graph = graph
        self.state = state or ThreadState(thread_id=thread_id)
        self._lock = asyncio.Lock()
        self._abort: AbortSignal | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def handle_message(self, text: str, abort: AbortSignal | None = None) -> ThreadState:
        """Run the graph for one inbound user message and return the final state."""
        async with self._lock:
            run_id = uuid.uuid4().hex[:12]
            self._abort = abort or AbortSignal()
            self.state.add_message(MessageRole.USER, text)
            self.state.reset_run()

            set_trace_context(thread_id=self.thread_id, run_id=run_id)
            try:
                state = await self.graph.execute(self.state, abort=self._abort)
            finally:
                self._abort = None
                clear_trace_context()

            if state.response is None:
                state.response = fallback_response(state)
            state.add_message(MessageRole.ASSISTANT, state.response)
            self.state = state
            return state

    def cancel(self, reason: str = "Cancelled by user") -> bool:
        """Abort the in-flight run, if any."""
        if self._abort is None:
            return False
        self._abort.abort(reason)
        return True
