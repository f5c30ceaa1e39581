import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from morphometrics.visualization.plots import save_figure

log = logging.getLogger("PipelineReporter")


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, pd.DataFrame):
        return {str(k): _jsonable(v) for k, v in obj.to_dict(orient="index").items()}
    if isinstance(obj, pd.Series):
        return {str(k): _jsonable(v) for k, v in obj.to_dict().items()}
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    return obj


class PipelineReporter:
    """
    Collects per-stage summaries, tables and figures, then writes
    ``<name>.json`` and ``<name>.md`` into ``report_dir`` (figures under
    ``report_dir/figures``).
    """

    def __init__(self,
                 report_dir: Union[str, Path] = "reports",
                 make_plots: bool = True):
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        self.plots_dir = self.report_dir / "figures"
        self.make_plots = make_plots
        self.sections: Dict[str, Dict[str, Any]] = {}

    def add_section(self,
                    name: str,
                    summary: Optional[dict] = None,
                    tables: Optional[Dict[str, pd.DataFrame]] = None,
                    charts: Optional[List[str]] = None) -> None:
        sect = self.sections.setdefault(name, {"summary": {}, "tables": {}, "charts": []})
        sect["summary"].update(summary or {})
        sect["tables"].update(tables or {})
        sect["charts"].extend(charts or [])

    def add_chart(self, section: str, fig, filename: str) -> Optional[str]:
        if not self.make_plots:
            plt.close(fig)
            return None
        path = save_figure(fig, self.plots_dir / filename)
        self.add_section(section, charts=[path])
        return path

    def generate_report(self, output_name: str = "analysis_report") -> Dict:
        final_report = {}
        markdown = ["# Penguin Morphometrics Report\n"]

        for name, sect in self.sections.items():
            markdown.append(f"## {name}\n")
            if sect["summary"]:
                markdown.append("```json\n" + json.dumps(_jsonable(sect["summary"]), indent=2) + "\n```\n")
            for title, table in sect["tables"].items():
                markdown.append(f"### {title}\n")
                markdown.append(table.to_markdown(floatfmt=".4g") + "\n")
            for chart in sect["charts"]:
                rel = Path(chart).relative_to(self.report_dir) if Path(chart).is_relative_to(self.report_dir) else chart
                markdown.append(f"![{name}]({rel})\n")

            final_report[name] = {
                "summary": _jsonable(sect["summary"]),
                "tables": {t: _jsonable(df) for t, df in sect["tables"].items()},
                "charts": list(sect["charts"]),
            }

        json_path = self.report_dir / f"{output_name}.json"
        md_path = self.report_dir / f"{output_name}.md"
        with open(json_path, "w") as f:
            json.dump(final_report, f, indent=2)
        with open(md_path, "w") as f:
            f.write("\n".join(markdown))
        log.info(f"report written → {json_path}, {md_path}")
        return final_report
