"""Query generation stage.

For every company, each unprocessed instruction becomes one query (oldest
first). A company without pending instructions gets one exploration query
steered away from its past queries instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..ai.query_writer import MAX_PAST_QUERIES, QueryWriter
from ..errors import EntityNotFoundError
from ..models import Company, Instruction
from ..store import PipelineStore
from .steps import StepRunner, run_directly

logger = logging.getLogger(__name__)


@dataclass
class GenerationReport:
    """What one generation pass produced.

    Attributes:
        focused: Ids of queries generated from instructions.
        exploration: Ids of exploration queries.
        failures: ``{"company_id", "instruction_id", "error"}`` per failure.
    """

    focused: list[str] = field(default_factory=list)
    exploration: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def generated(self) -> int:
        return len(self.focused) + len(self.exploration)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated": self.generated,
            "focused": self.focused,
            "exploration": self.exploration,
            "failures": self.failures,
        }


class QueryGenerator:
    """Turns instructions (or nothing) into discovery queries.

    Args:
        store: Pipeline store.
        writer: AI query writer.
        history_limit: Past queries shown to the exploration prompt.
    """

    def __init__(
        self,
        store: PipelineStore,
        writer: QueryWriter,
        history_limit: int = MAX_PAST_QUERIES,
    ) -> None:
        self.store = store
        self.writer = writer
        self.history_limit = history_limit

    async def run(
        self,
        company_id: Optional[str] = None,
        step: StepRunner = run_directly,
    ) -> GenerationReport:
        """Generate queries for one company or for all of them.

        A failure for one instruction or company is logged and recorded in
        the report; the remaining instructions and companies still run, and
        the failed instruction stays unprocessed for the next cycle.

        Raises:
            EntityNotFoundError: If ``company_id`` names no company.
        """
        if company_id is not None:
            company = await self.store.get_company(company_id)
            if company is None:
                raise EntityNotFoundError(f"Company {company_id} not found")
            companies = [company]
        else:
            companies = await self.store.list_companies()

        report = GenerationReport()
        for company in companies:
            try:
                await self._run_company(company, step, report)
            except Exception as e:
                logger.error(
                    "Query generation failed for company",
                    exc_info=True,
                    extra={"company_id": company.id},
                )
                report.failures.append(
                    {"company_id": company.id, "instruction_id": None, "error": str(e)}
                )

        logger.info(
            "Query generation finished",
            extra={
                "company_count": len(companies),
                "generated": report.generated,
                "failures": len(report.failures),
            },
        )
        return report

    async def _run_company(
        self, company: Company, step: StepRunner, report: GenerationReport
    ) -> None:
        instructions = await self.store.pending_instructions(company.id)
        if not instructions:
            query_id = await step(
                f"explore:{company.id}", self.generate_exploration, company
            )
            if query_id:
                report.exploration.append(query_id)
            return

        for instruction in instructions:
            try:
                query_id = await step(
                    f"instruction:{instruction.id}",
                    self.generate_for_instruction,
                    company,
                    instruction,
                )
            except Exception as e:
                logger.error(
                    "Query generation failed for instruction",
                    exc_info=True,
                    extra={"company_id": company.id, "instruction_id": instruction.id},
                )
                report.failures.append(
                    {
                        "company_id": company.id,
                        "instruction_id": instruction.id,
                        "error": str(e),
                    }
                )
                continue
            if query_id:
                report.focused.append(query_id)

    async def generate_for_instruction(
        self, company: Company, instruction: Instruction
    ) -> Optional[str]:
        """Generate and persist the query for one instruction.

        Returns:
            The query id, or None when another run already processed the
            instruction.
        """
        generated = await self.writer.focused(company.context(), instruction.content)
        query = await self.store.create_query(
            company.id,
            generated.query,
            generated.criteria,
            rationale=generated.rationale,
            instruction_id=instruction.id,
        )
        if query is None:
            return None
        logger.info(
            "Query generated from instruction",
            extra={
                "company_id": company.id,
                "instruction_id": instruction.id,
                "query_id": query.id,
            },
        )
        return query.id

    async def generate_exploration(self, company: Company) -> Optional[str]:
        """Generate one exploration query from the company's query history."""
        history = await self.store.recent_queries_with_yield(
            company.id, limit=self.history_limit
        )
        past = [(query.query, count) for query, count in history]
        generated = await self.writer.explore(company.context(), past)
        query = await self.store.create_query(
            company.id,
            generated.query,
            generated.criteria,
            rationale=generated.rationale,
        )
        logger.info(
            "Exploration query generated",
            extra={"company_id": company.id, "query_id": query.id},
        )
        return query.id
