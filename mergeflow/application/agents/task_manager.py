"""Background agent runs over one model or a collaborating group of models."""

import asyncio
import uuid
from datetime import datetime
from typing import Dict, Any, List, Optional, Set

from mergeflow.core.exceptions import AllModelsFailedError, ModelSelectionError
from mergeflow.core.interfaces import IQualityAnalyzer
from mergeflow.core.models import AgentTask, TaskStatus
from mergeflow.application.dispatch import ParallelDispatcher
from mergeflow.application.registry import ModelRegistry
from mergeflow.utils.logger import get_logger, log_context

logger = get_logger(__name__)

MIN_COLLABORATORS = 2
MAX_COLLABORATORS = 4


def offline_response(message: str, mode: str = "single-model") -> str:
    """Canned answer used when no model can be reached; ``mode`` names the run."""
    return (
        f"Agent ({mode}) response:\n\n"
        f'I understood your request: "{message}".\n'
        "Since no model API is configured, I generated a helpful, concise offline response.\n\n"
        "Key points:\n"
        "- I parsed your intent and extracted the main question.\n"
        "- I applied general knowledge to craft a clear, structured answer.\n\n"
        "Tip: Add an API key to enable real model inference."
    )


def is_collaboration(model: Optional[str], options: Dict[str, Any]) -> bool:
    collaboration = options.get("collaboration")
    if collaboration is True:
        return True
    if isinstance(collaboration, dict) and collaboration.get("enabled") is True:
        return True
    return len(options.get("selected_models") or []) > 1


class AgentTaskManager:
    """Runs agent tasks in the background and keeps their step logs."""

    def __init__(
        self,
        registry: ModelRegistry,
        dispatcher: ParallelDispatcher,
        analyzer: IQualityAnalyzer,
        config: Optional[Dict[str, Any]] = None,
    ):
        config = config or {}
        self.registry = registry
        self.dispatcher = dispatcher
        self.analyzer = analyzer
        self.step_delay = config.get("step_delay_ms", 150) / 1000.0
        self.task_timeout = config.get("task_timeout_ms", 120000) / 1000.0
        self.max_tasks = config.get("max_tasks", 500)

        self.tasks: Dict[str, AgentTask] = {}
        self._running: Set[asyncio.Task] = set()

    def start_agent(
        self,
        message: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Start a task and return its id; the work continues in the background."""
        options = options or {}
        task = AgentTask(id=str(uuid.uuid4()))
        self.tasks[task.id] = task
        self._prune()

        collaborative = is_collaboration(model, options)
        runner = self._run_collaboration if collaborative else self._run_single

        background = asyncio.create_task(self._supervise(task, runner(task, message, model, options)))
        self._running.add(background)
        background.add_done_callback(self._running.discard)

        logger.info(
            f"Agent task started ({'collaboration' if collaborative else 'single-model'})",
            extra={"task_id": task.id},
        )
        return task.id

    def get_task(self, task_id: str) -> Optional[AgentTask]:
        return self.tasks.get(task_id)

    def list_tasks(self) -> List[AgentTask]:
        return list(self.tasks.values())

    async def wait(self, task_id: str) -> Optional[AgentTask]:
        """Block until a task finishes."""
        while True:
            task = self.tasks.get(task_id)
            if task is None or task.is_finished:
                return task
            await asyncio.sleep(0.01)

    async def shutdown(self) -> None:
        for background in list(self._running):
            background.cancel()
        await asyncio.gather(*self._running, return_exceptions=True)

    def _log(self, task: AgentTask, message: str) -> None:
        task.logs.append(f"{datetime.utcnow().isoformat()}  {message}")

    def _finish(self, task: AgentTask, status: TaskStatus, result: Dict[str, Any]) -> None:
        task.status = status
        task.result = result
        task.finished_at = datetime.utcnow()

    async def _supervise(self, task: AgentTask, work) -> None:
        try:
            with log_context(task_id=task.id):
                await asyncio.wait_for(work, timeout=self.task_timeout)
        except asyncio.TimeoutError:
            self._log(task, f"ERROR: task timed out after {self.task_timeout:.0f}s")
            self._finish(task, TaskStatus.FAILED, {"error": "Agent task timed out"})
            logger.error("Agent task timed out", extra={"task_id": task.id})
        except Exception as e:
            self._log(task, f"ERROR: {e}")
            self._finish(task, TaskStatus.FAILED, {"error": str(e) or "Agent processing failed"})
            logger.error(f"Agent task failed: {e}", extra={"task_id": task.id})

    async def _pause(self, factor: float = 1.0) -> None:
        if self.step_delay:
            await asyncio.sleep(self.step_delay * factor)

    async def _run_single(
        self, task: AgentTask, message: str, model: Optional[str], options: Dict[str, Any]
    ) -> None:
        self._log(task, "Agent started: single-model mode")
        self._log(task, "Planning steps for the query...")
        await self._pause()

        self._log(task, "1) Analyze user goal")
        self._log(task, f"   - Input length: {len(message)} chars")
        await self._pause()

        selected = model
        if not selected:
            descriptors = self.registry.descriptors
            selected = descriptors[0].model_id if descriptors else None
        self._log(task, f"2) Select model: {selected or 'none (will use safe fallback)'}")
        await self._pause()

        self._log(task, "3) Prepare prompt and constraints")
        await self._pause()

        self._log(task, "4) Generate response (single-model)...")
        if selected:
            call = await self.dispatcher.call_with_retry(selected, message, options)
            if call.success:
                content = call.content
                self._log(task, f"   + Model responded in {call.response_time_ms}ms")
            else:
                content = offline_response(message)
                kind = call.error_kind.value if call.error_kind else "unknown"
                self._log(task, f"   ! Model call failed ({kind}). Using safe offline fallback.")
        else:
            content = offline_response(message)
            self._log(task, "   ! No configured models. Using safe offline fallback.")

        self._log(task, "5) Finalize and return answer")
        await self._pause()

        self._finish(task, TaskStatus.COMPLETED, {"content": content, "model": selected})
        self._log(task, "Done.")

    async def _run_collaboration(
        self, task: AgentTask, message: str, model: Optional[str], options: Dict[str, Any]
    ) -> None:
        self._log(task, "Agent started: collaboration mode")
        self._log(task, "Planning collaborative steps...")
        await self._pause()

        self._log(task, "1) Analyze user goal")
        self._log(task, f"   - Input length: {len(message)} chars")
        await self._pause()

        selected = list(options.get("selected_models") or [])
        if not selected and model:
            selected = [model]
        if not selected:
            available = [d.model_id for d in self.registry.descriptors]
            selected = available[: max(MIN_COLLABORATORS, min(len(available), MAX_COLLABORATORS))]
        self._log(
            task,
            f"2) Select models for collaboration: {', '.join(selected) or 'none (will use safe fallback)'}",
        )
        await self._pause()

        self._log(task, "3) Prepare prompts and constraints for multi-model inference")
        await self._pause()

        self._log(task, "4) Generate responses (multi-model parallel calls)...")
        details = None
        if selected:
            try:
                dispatch = await self.dispatcher.dispatch(message, selected, options)
                content = dispatch.merged.content
                details = dispatch.to_dict()
                self._log(
                    task,
                    f"   + {len(dispatch.successful)}/{len(dispatch.individual)} models responded "
                    f"(in {dispatch.total_time_ms}ms)",
                )
            except (AllModelsFailedError, ModelSelectionError) as e:
                content = offline_response(message, "collaboration")
                self._log(task, f"   ! {e}. Using safe offline fallback.")
        else:
            content = offline_response(message, "collaboration")
            self._log(task, "   ! No configured models. Using safe offline fallback.")

        self._log(task, "5) Run multi-agent analysis (fact-check, bias, coherence)")
        analysis = None
        try:
            analysis = await self.analyzer.analyze(content, {"original_query": message})
            self._log(task, f"   + Analysis completed (quality_score={analysis.quality_score:.2f})")
        except Exception as e:
            self._log(task, f"   ! Analysis failed: {e}")

        self._log(task, "6) Finalize and return collaborative answer")
        await self._pause()

        result: Dict[str, Any] = {"content": content, "models": selected}
        if details is not None:
            result["details"] = details
        if analysis is not None:
            result["analysis"] = analysis.to_dict()
        self._finish(task, TaskStatus.COMPLETED, result)
        self._log(task, "Done.")

    def _prune(self) -> None:
        """Drop the oldest finished tasks beyond ``max_tasks``."""
        excess = len(self.tasks) - self.max_tasks
        if excess <= 0:
            return
        finished = sorted(
            (t for t in self.tasks.values() if t.is_finished), key=lambda t: t.created_at
        )
        for task in finished[:excess]:
            del self.tasks[task.id]
