"""
Deployment pipeline: parse -> match -> plan -> execute.

The pipeline wires the parser, matcher, planner and executor together
so the CLI (or any other caller) deals with one object.

Usage:
    pipeline = DeploymentPipeline(executor=DeploymentExecutor(client))
    prepared = pipeline.prepare(diagram_text, request)
    for warning in prepared.plan.warnings:
        print(warning)
    result = await pipeline.deploy(prepared, progress=print)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ...formats.cdm.cdm_matcher import CDMMatch, CDMMatcher
from ...formats.erd.erd_models import ParseResult
from ...formats.erd.erd_parser import ERDParser
from ...shared.models.deployment import DeploymentRequest, DeploymentResult
from ...shared.models.operations import DeploymentPlan
from .executor import DeploymentExecutor, ProgressCallback
from .planner import SchemaPlanner

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Stage a pipeline run reached."""
    PARSING = "parsing"
    MATCHING = "matching"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"


class DiagramInvalidError(Exception):
    """The diagram parsed but has validation errors, so it is not planned."""

    def __init__(self, parse_result: ParseResult):
        self.parse_result = parse_result
        messages = [w.message for w in parse_result.errors]
        super().__init__(
            f"Diagram has {len(messages)} validation error(s): " + "; ".join(messages)
        )


@dataclass(frozen=True)
class PreparedDeployment:
    """Everything computed before any remote call is made."""
    parse_result: ParseResult
    matches: Tuple[CDMMatch, ...]
    plan: DeploymentPlan
    request: DeploymentRequest

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validation": self.parse_result.validation.to_dict(),
            "matches": [m.to_dict() for m in self.matches],
            "plan": self.plan.to_dict(),
        }


class DeploymentPipeline:
    """Compose parser, matcher, planner and executor."""

    def __init__(
        self,
        executor: Optional[DeploymentExecutor] = None,
        parser: Optional[ERDParser] = None,
        matcher: Optional[CDMMatcher] = None,
        planner: Optional[SchemaPlanner] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.matcher = matcher or CDMMatcher(logger=self.logger)
        self.parser = parser or ERDParser(matcher=self.matcher, logger=self.logger)
        self.planner = planner or SchemaPlanner(logger=self.logger)
        self.executor = executor
        self.stage: Optional[PipelineStage] = None

    def prepare(self, diagram_text: str, request: DeploymentRequest) -> PreparedDeployment:
        """
        Parse, match and plan without touching the environment.

        Raises:
            ParseError: If nothing could be parsed.
            DiagramInvalidError: If the diagram has validation errors.
            PlanError: If the request is invalid or the plan is inconsistent.
        """
        self.stage = PipelineStage.PARSING
        parse_result = self.parser.parse(diagram_text)
        if not parse_result.is_valid:
            raise DiagramInvalidError(parse_result)

        self.stage = PipelineStage.MATCHING
        matches: List[CDMMatch] = []
        if request.include_cdm_entities:
            matches = self.matcher.detect_canonical_entities(parse_result.entities)
            self.logger.info(f"Detected {len(matches)} standard table matches")

        self.stage = PipelineStage.PLANNING
        plan = self.planner.plan(parse_result.entities, parse_result.relationships, matches, request)
        return PreparedDeployment(
            parse_result=parse_result,
            matches=tuple(matches),
            plan=plan,
            request=request,
        )

    async def deploy(
        self,
        prepared: PreparedDeployment,
        progress: Optional[ProgressCallback] = None,
    ) -> DeploymentResult:
        """Execute a prepared deployment."""
        if self.executor is None:
            raise ValueError("DeploymentPipeline needs an executor to deploy")
        self.stage = PipelineStage.EXECUTING
        result = await self.executor.execute(prepared.plan, progress=progress)
        self.stage = PipelineStage.COMPLETED
        return result

    async def run(
        self,
        diagram_text: str,
        request: DeploymentRequest,
        progress: Optional[ProgressCallback] = None,
    ) -> DeploymentResult:
        """``prepare`` followed by ``deploy``."""
        return await self.deploy(self.prepare(diagram_text, request), progress=progress)
