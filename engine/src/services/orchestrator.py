"""
Pipeline orchestrator - runs a pipeline's execution groups.

Groups run strictly in order; the steps of a parallel group run concurrently
and the next group starts only once all of them reached a terminal status.
Step failures are recorded on the step and never escape the run loop.

There is no group-level halt after a failure. Each step decides on its own:
handler steps (listed in some on_success/on_failure) run only when triggered,
and a triggered handler ignores failed dependencies; any other step whose
dependency is blocked (failed, cancelled, or skipped because blocked) is
skipped unless its condition evaluates true. Steps skipped by their own
condition do not block their dependents.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set, Tuple

from engine.src.backends import ExecutionBackend, get_backend
from engine.src.config import Settings, get_settings
from engine.src.errors import (
    BackendError,
    CancellationError,
    ConditionError,
    PipelineConfigError,
    PipelineNotFoundError,
    PipelineValidationError,
    ResolutionError,
    StepFailure,
)
from engine.src.models.execution import ExecutionStatus, PipelineExecution, StepExecution
from engine.src.models.pipeline import Pipeline, Step
from engine.src.services import dependencies
from engine.src.services.blocks import BlockLibrary
from engine.src.services.conditions import evaluate_condition
from engine.src.services.monitor import CancellationToken, ExecutionMonitor
from engine.src.services.variables import VariableScopes, resolve, stringify
from engine.src.services.vault import CredentialVault, get_vault

logger = logging.getLogger(__name__)

SECRET_MASK = "********"

class RunState:
    """Bookkeeping shared by the steps of one execution."""

    def __init__(
        self,
        execution_id: str,
        pipeline: Pipeline,
        scopes: VariableScopes,
        token: CancellationToken,
        backend: ExecutionBackend,
    ):
        self.execution_id = execution_id
        self.pipeline = pipeline
        self.scopes = scopes
        self.token = token
        self.backend = backend
        self.working_directory = resolve(pipeline.execution_context.working_directory, scopes)
        self.triggered: Set[str] = set()
        self.blocked: Set[str] = set()
        self.handler_targets: Set[str] = {
            target
            for step in pipeline.steps
            for target in step.on_success + step.on_failure
        }
        self.cancel_observed = False

    def plain_variables(self) -> Dict[str, str]:
        """Non-secret variable values."""
        return VariableScopes(
            project=self.scopes.project,
            pipeline=self.scopes.pipeline,
        ).merged()

class PipelineOrchestrator:
    def __init__(
        self,
        monitor: ExecutionMonitor,
        block_library: Optional[BlockLibrary] = None,
        vault: Optional[CredentialVault] = None,
        store=None,
        backend: Optional[ExecutionBackend] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.monitor = monitor
        self.block_library = block_library or BlockLibrary()
        self.vault = vault or get_vault(self.settings)
        self.store = store
        # When set, used for every pipeline instead of its execution context
        self.backend = backend
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(
        self,
        pipeline: Pipeline,
        variables: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, str]] = None,
        triggered_by: str = "user",
    ) -> PipelineExecution:
        """Run a pipeline to completion and return the final record."""
        execution, token = self._create_execution(pipeline, triggered_by)
        return await self._run(pipeline, execution.id, token, variables, secrets)

    def start(
        self,
        pipeline: Pipeline,
        variables: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, str]] = None,
        triggered_by: str = "user",
    ) -> str:
        """Schedule a run on the current event loop and return its execution id."""
        execution, token = self._create_execution(pipeline, triggered_by)
        task = asyncio.create_task(
            self._run(pipeline, execution.id, token, variables, secrets)
        )
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution.id, None))
        return execution.id

    def trigger(
        self,
        pipeline_id: str,
        variables: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, str]] = None,
        triggered_by: str = "user",
    ) -> str:
        """Load a stored pipeline and start it."""
        pipeline = self.store.load_pipeline(pipeline_id) if self.store else None
        if pipeline is None:
            raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")
        return self.start(pipeline, variables, secrets, triggered_by)

    async def wait(self, execution_id: str) -> PipelineExecution:
        """Wait for a run started with `start` and return its final record."""
        task = self._tasks.get(execution_id)
        if task is not None:
            return await task
        return self.monitor.get_execution(execution_id)

    def _create_execution(
        self,
        pipeline: Pipeline,
        triggered_by: str,
    ) -> Tuple[PipelineExecution, CancellationToken]:
        if not pipeline.enabled:
            raise PipelineConfigError(f"Pipeline {pipeline.id} is disabled")

        execution = PipelineExecution(
            pipeline_id=pipeline.id,
            project_id=pipeline.project_id,
            triggered_by=triggered_by,
        )
        token = self.monitor.register(execution)
        return execution, token

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        pipeline: Pipeline,
        execution_id: str,
        token: CancellationToken,
        variables: Optional[Dict[str, Any]],
        secrets: Optional[Dict[str, str]],
    ) -> PipelineExecution:
        logger.info(
            f"Starting execution {execution_id} of pipeline {pipeline.id} "
            f"with {len(pipeline.steps)} steps"
        )
        self.monitor.update_execution(execution_id, status=ExecutionStatus.RUNNING)

        try:
            groups = dependencies.resolve(pipeline.steps)
            scopes = await self._snapshot_variables(pipeline, variables, secrets)
        except (PipelineValidationError, ResolutionError) as e:
            logger.error(f"Execution {execution_id} aborted: {e}")
            return self._finish(execution_id, ExecutionStatus.FAILED, error=str(e))
        except Exception as e:
            logger.exception(f"Execution {execution_id} failed to load secrets")
            return self._finish(
                execution_id, ExecutionStatus.FAILED,
                error=f"Failed to resolve secrets: {e}",
            )

        ordered = [step for group in groups for step in group.steps]
        self.monitor.update_execution(
            execution_id,
            variables=self._masked_variables(scopes),
            step_executions=[
                StepExecution(step_id=step.id, step_name=step.display_name)
                for step in ordered
            ],
        )
        self._save(execution_id)

        state = RunState(
            execution_id=execution_id,
            pipeline=pipeline,
            scopes=scopes,
            token=token,
            backend=self.backend or get_backend(pipeline.execution_context, self.settings),
        )

        try:
            for index, group in enumerate(groups):
                if token.cancelled:
                    state.cancel_observed = True
                    break

                logger.info(
                    f"Execution {execution_id}: group {index + 1}/{len(groups)} "
                    f"[{', '.join(group.step_ids)}]"
                    f"{' (parallel)' if group.can_run_in_parallel else ''}"
                )
                if group.can_run_in_parallel:
                    await asyncio.gather(*(self._run_step(step, state) for step in group.steps))
                else:
                    await self._run_step(group.steps[0], state)
                self._save(execution_id)

            if token.cancelled:
                state.cancel_observed = True

            execution = self.monitor.get_execution(execution_id)
            for step in ordered:
                if execution.step(step.id).status == ExecutionStatus.PENDING:
                    self._skip(state, step, "run cancelled")

            status, error, failed_step_id = self._final_status(state)
        except Exception as e:
            logger.exception(f"Execution {execution_id} crashed")
            status, error, failed_step_id = ExecutionStatus.FAILED, f"Internal error: {e}", None

        return self._finish(execution_id, status, error=error, failed_step_id=failed_step_id)

    async def _snapshot_variables(
        self,
        pipeline: Pipeline,
        variables: Optional[Dict[str, Any]],
        secrets: Optional[Dict[str, str]],
    ) -> VariableScopes:
        resolved_secrets: Dict[str, str] = {}
        for secret_ref in pipeline.secrets:
            resolved_secrets[secret_ref] = await self.vault.get_secret_value(secret_ref)
        resolved_secrets.update(secrets or {})

        return VariableScopes(
            project=pipeline.variables_for("project"),
            pipeline={**pipeline.variables_for("pipeline"), **(variables or {})},
            secrets=resolved_secrets,
        )

    def _masked_variables(self, scopes: VariableScopes) -> Dict[str, str]:
        values = VariableScopes(project=scopes.project, pipeline=scopes.pipeline).merged()
        for name in scopes.secrets:
            values[name] = SECRET_MASK
        return values

    def _final_status(self, state: RunState) -> Tuple[ExecutionStatus, Optional[str], Optional[str]]:
        if state.cancel_observed:
            return ExecutionStatus.CANCELLED, "Execution cancelled", None

        execution = self.monitor.get_execution(state.execution_id)
        records = {s.step_id: s for s in execution.step_executions}

        for step_execution in execution.step_executions:
            if step_execution.status != ExecutionStatus.FAILED:
                continue
            step = next(s for s in state.pipeline.steps if s.id == step_execution.step_id)
            absorbed = any(
                records[target].status == ExecutionStatus.SUCCESS
                for target in step.on_failure
            )
            if absorbed:
                logger.info(f"Failure of step {step.id} absorbed by its on_failure handler")
                continue
            failure = StepFailure(
                step.id,
                step_execution.error or "step failed",
                step_execution.retry_count,
            )
            return ExecutionStatus.FAILED, str(failure), step.id

        return ExecutionStatus.SUCCESS, None, None

    def _finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        failed_step_id: Optional[str] = None,
    ) -> PipelineExecution:
        execution = self.monitor.update_execution(
            execution_id,
            status=status,
            error=error,
            failed_step_id=failed_step_id,
            finished_at=datetime.utcnow(),
        )
        if self._save(execution_id) and self.monitor.store is not None:
            self.monitor.forget(execution_id)
        logger.info(f"Execution {execution_id} finished with status: {status.value}")
        return execution

    def _save(self, execution_id: str) -> bool:
        if self.store is None:
            return False
        try:
            self.store.save_execution(self.monitor.get_execution(execution_id))
        except Exception:
            logger.exception(f"Failed to persist execution {execution_id}")
            return False
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(self, step: Step, state: RunState):
        try:
            try:
                state.token.raise_if_cancelled()
                reason = self._gate(step, state)
                if reason:
                    self._skip(state, step, reason)
                    return
                command, env = self._prepare(step, state)
            except CancellationError:
                state.cancel_observed = True
                self._skip(state, step, "run cancelled")
                return
            except (ConditionError, ResolutionError) as e:
                logger.error(f"Execution {state.execution_id}: step {step.id} failed: {e}")
                self._fail_before_start(state, step, str(e))
                return

            await self._attempt(step, state, command, env)
        except Exception as e:
            logger.exception(f"Execution {state.execution_id}: step {step.id} crashed")
            record = self.monitor.get_execution(state.execution_id).step(step.id)
            if record.finished_at is None:
                self._fail_before_start(state, step, f"Internal error: {e}")

    def _gate(self, step: Step, state: RunState) -> Optional[str]:
        """Return a skip reason, or None if the step should run."""
        triggered = step.id in state.triggered

        if step.id in state.handler_targets and not triggered:
            return "not triggered by on_success/on_failure"

        blocked = [dep for dep in step.depends_on if dep in state.blocked]
        if blocked and not triggered:
            if step.condition and self._condition_holds(step, state):
                return None
            state.blocked.add(step.id)
            return f"dependency did not succeed: {', '.join(blocked)}"

        if step.condition and not self._condition_holds(step, state):
            return f"condition not met: {step.condition}"

        return None

    def _condition_holds(self, step: Step, state: RunState) -> bool:
        execution = self.monitor.get_execution(state.execution_id)
        variables = state.plain_variables()

        context: Dict[str, Any] = dict(variables)
        context["vars"] = variables
        context["steps"] = {
            s.step_id: {
                "status": s.status.value,
                "exit_code": s.exit_code,
                "output": s.output,
                "retry_count": s.retry_count,
            }
            for s in execution.step_executions
        }
        return evaluate_condition(step.condition, context)

    def _prepare(self, step: Step, state: RunState) -> Tuple[str, Dict[str, str]]:
        """Resolve the step's command and environment."""
        strict = self.settings.strict_variables
        template = self.block_library.get_command_template(step.block_id)
        scopes = state.scopes

        config = {
            name: resolve(stringify(value), scopes, strict=strict)
            for name, value in step.config.items()
        }
        step_scopes = VariableScopes(
            project={**template.defaults(), **scopes.project},
            pipeline={**scopes.pipeline, **config},
            secrets=scopes.secrets,
        )

        if strict:
            available = step_scopes.merged()
            missing = [name for name in template.required() if name not in available]
            if missing:
                raise ResolutionError(
                    f"Missing required parameters for block '{step.block_id}': {', '.join(missing)}",
                    missing=missing,
                )

        command = resolve(template.template, step_scopes, strict=strict)

        env = {
            name: resolve(value, scopes)
            for name, value in state.pipeline.execution_context.environment.items()
        }
        env.update({
            "PIPELINE_EXECUTION_ID": state.execution_id,
            "PIPELINE_STEP_ID": step.id,
            "PIPELINE_STEP_NAME": step.display_name,
        })
        return command, env

    async def _attempt(self, step: Step, state: RunState, command: str, env: Dict[str, str]):
        """Run the command, retrying failed attempts up to the step's limit."""
        execution_id = state.execution_id
        timeout = step.timeout_seconds or self.settings.default_step_timeout
        max_retries = min(step.retries, self.settings.max_step_retries)
        retry_count = 0
        started_at = datetime.utcnow()

        self.monitor.update_step(
            execution_id, step.id,
            status=ExecutionStatus.RUNNING,
            started_at=started_at,
            log=f"Attempt 1 started (block {step.block_id})",
        )
        logger.info(f"Execution {execution_id}: step {step.id} started")

        while True:
            try:
                result = await asyncio.wait_for(
                    state.backend.run(command, state.working_directory, env, timeout),
                    timeout,
                )
                self.monitor.update_step(
                    execution_id, step.id,
                    exit_code=result.exit_code,
                    append_output=result.stdout,
                    log=f"stderr: {result.stderr.strip()}" if result.stderr.strip() else None,
                )
                if result.succeeded:
                    self._complete(state, step, ExecutionStatus.SUCCESS, started_at)
                    return
                error = f"Command exited with code {result.exit_code}"
            except asyncio.TimeoutError:
                error = f"Step timed out after {timeout}s"
            except BackendError as e:
                error = str(e)

            logger.warning(
                f"Execution {execution_id}: step {step.id} attempt {retry_count + 1} failed: {error}"
            )
            self.monitor.update_step(
                execution_id, step.id,
                status=ExecutionStatus.FAILED,
                error=error,
                log=error,
            )

            if retry_count >= max_retries:
                self._complete(state, step, ExecutionStatus.FAILED, started_at)
                return

            if state.token.cancelled:
                state.cancel_observed = True
                self._complete(state, step, ExecutionStatus.CANCELLED, started_at,
                               log="Retry abandoned: run cancelled")
                return

            retry_count += 1
            self.monitor.update_step(
                execution_id, step.id,
                retry_count=retry_count,
                log=f"Retrying in {step.retry_delay_seconds}s ({retry_count}/{max_retries})",
            )
            if await state.token.sleep(step.retry_delay_seconds):
                state.cancel_observed = True
                self._complete(state, step, ExecutionStatus.CANCELLED, started_at,
                               log="Retry abandoned: run cancelled")
                return

            self.monitor.update_step(
                execution_id, step.id,
                status=ExecutionStatus.RUNNING,
                log=f"Attempt {retry_count + 1} started",
            )

    def _complete(
        self,
        state: RunState,
        step: Step,
        status: ExecutionStatus,
        started_at: datetime,
        log: Optional[str] = None,
    ):
        finished_at = datetime.utcnow()
        self.monitor.update_step(
            state.execution_id, step.id,
            status=status,
            finished_at=finished_at,
            duration_ms=int((finished_at - started_at).total_seconds() * 1000),
            log=log,
        )
        self._signal(state, step, status)
        logger.info(f"Execution {state.execution_id}: step {step.id} {status.value}")

    def _fail_before_start(self, state: RunState, step: Step, message: str):
        self.monitor.update_step(
            state.execution_id, step.id,
            status=ExecutionStatus.FAILED,
            error=message,
            finished_at=datetime.utcnow(),
            log=message,
        )
        self._signal(state, step, ExecutionStatus.FAILED)

    def _skip(self, state: RunState, step: Step, reason: str):
        self.monitor.update_step(
            state.execution_id, step.id,
            status=ExecutionStatus.SKIPPED,
            skip_reason=reason,
            finished_at=datetime.utcnow(),
            log=f"Skipped: {reason}",
        )
        logger.info(f"Execution {state.execution_id}: step {step.id} skipped ({reason})")

    def _signal(self, state: RunState, step: Step, status: ExecutionStatus):
        if status == ExecutionStatus.SUCCESS:
            state.triggered.update(step.on_success)
        elif status == ExecutionStatus.FAILED:
            state.triggered.update(step.on_failure)
            state.blocked.add(step.id)
        elif status == ExecutionStatus.CANCELLED:
            state.blocked.add(step.id)
