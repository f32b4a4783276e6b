"""
Step dependency resolution.

Turns the declared step graph into an ordered list of execution groups.
Steps whose dependencies are all scheduled form the next "ready set"; the
parallel steps of a ready set share one group, each ``parallel=False`` step
gets a group of its own. Ties are broken by declaration order so the same
pipeline always yields the same plan.

Ordering edges come from ``depends_on`` and from the ``on_success`` /
``on_failure`` handler lists (a handler is always scheduled after the step
that can trigger it).
"""

import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from engine.src.errors import PipelineValidationError
from engine.src.models.pipeline import ExecutionGroup, Step

logger = logging.getLogger(__name__)

class DependencyValidation(BaseModel):
    valid: bool
    errors: List[str] = []

def ordering_edges(steps: Sequence[Step]) -> Dict[str, List[str]]:
    """Map each step id to the ids that must be scheduled before it."""
    edges: Dict[str, List[str]] = {step.id: list(step.depends_on) for step in steps}
    for step in steps:
        for target in step.on_success + step.on_failure:
            if target in edges and step.id not in edges[target]:
                edges[target].append(step.id)
    return edges

def find_cycle(edges: Dict[str, List[str]]) -> Optional[List[str]]:
    """
    Iterative DFS with an explicit stack.
    Returns the cycle as a list of ids (first id repeated at the end) or None.
    """
    visited = set()

    for root in edges:
        if root in visited:
            continue

        path: List[str] = [root]
        on_path = {root}
        stack = [iter(edges.get(root, []))]
        visited.add(root)

        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if child not in edges:
                continue  # reported as a missing dependency
            if child in on_path:
                return path[path.index(child):] + [child]
            if child in visited:
                continue
            visited.add(child)
            on_path.add(child)
            path.append(child)
            stack.append(iter(edges.get(child, [])))

    return None

def validate(steps: Sequence[Step]) -> DependencyValidation:
    """Validate step ids, references and acyclicity."""
    errors: List[str] = []
    seen = set()
    duplicates: List[str] = []

    for step in steps:
        if step.id in seen and step.id not in duplicates:
            duplicates.append(step.id)
        seen.add(step.id)

    if duplicates:
        errors.append(f"Duplicate step IDs: {', '.join(duplicates)}")

    for step in steps:
        for dep_id in step.depends_on:
            if dep_id not in seen:
                errors.append(f"Step {step.id} depends on missing step: {dep_id}")
        for target in step.on_success:
            if target not in seen:
                errors.append(f"Step {step.id} on_success references missing step: {target}")
        for target in step.on_failure:
            if target not in seen:
                errors.append(f"Step {step.id} on_failure references missing step: {target}")

    cycle = find_cycle(ordering_edges(steps))
    if cycle:
        errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

    return DependencyValidation(valid=not errors, errors=errors)

def resolve(steps: Sequence[Step]) -> List[ExecutionGroup]:
    """
    Build execution groups for a list of steps.
    Raises PipelineValidationError instead of returning a partial plan.
    """
    result = validate(steps)
    if not result.valid:
        raise PipelineValidationError(result.errors)

    edges = ordering_edges(steps)
    scheduled = set()
    groups: List[ExecutionGroup] = []

    while len(scheduled) < len(steps):
        ready = [
            step for step in steps
            if step.id not in scheduled
            and all(dep in scheduled for dep in edges[step.id])
        ]

        if not ready:
            remaining = [step.id for step in steps if step.id not in scheduled]
            logger.error(f"Circular or missing dependencies detected: {remaining}")
            raise PipelineValidationError(
                [f"Unable to schedule steps: {', '.join(remaining)}"]
            )

        parallel_steps = [step for step in ready if step.parallel]
        if parallel_steps:
            groups.append(ExecutionGroup(steps=parallel_steps, can_run_in_parallel=True))

        for step in ready:
            if not step.parallel:
                groups.append(ExecutionGroup(steps=[step], can_run_in_parallel=False))

        scheduled.update(step.id for step in ready)

    logger.debug(f"Resolved {len(steps)} steps into {len(groups)} groups")
    return groups
