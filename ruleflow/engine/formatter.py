"""Default output formatter."""

import json

from ruleflow.models.execution import StepRecord
from ruleflow.models.rule import OutputConfig, OutputFormat


class TextOutputFormatter:
    """Render step results as plain text according to ``OutputConfig.format``.

    - summary: result of the last successful step
    - detailed: one section per successful step
    - raw: JSON array of step records
    """

    def format(self, step_records: list[StepRecord], output_config: OutputConfig) -> str:
        if not step_records:
            return ""

        if output_config.format == OutputFormat.RAW:
            return json.dumps(
                [record.model_dump(mode="json") for record in step_records],
                ensure_ascii=False,
            )

        if output_config.format == OutputFormat.DETAILED:
            sections = [
                f"Step {record.step_index + 1} ({record.type}):\n{self._stringify(record.result)}"
                for record in step_records
            ]
            return "\n\n".join(sections)

        return self._stringify(step_records[-1].result)

    @staticmethod
    def _stringify(value: object) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)
