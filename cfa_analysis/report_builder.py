"""
HTML Report Builder Module

분석 단계마다 설명, 코드(모델 스펙), 표, 그림을 순서대로 쌓아
목차가 있는 단일 HTML 보고서를 만듭니다. 그림은 base64로 내장됩니다.
"""

import base64
import html
import io
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union
import logging

import pandas as pd
import matplotlib.pyplot as plt
import graphviz

from .config import ReportConfig

logger = logging.getLogger(__name__)

_STYLE = """
    body { font-family: Arial, sans-serif; margin: 20px 40px; line-height: 1.5; }
    .header { text-align: center; margin-bottom: 30px; }
    .toc { background-color: #f5f5f5; padding: 15px; margin: 20px 0; }
    .section { margin: 30px 0; }
    .plot-container { margin: 20px 0; text-align: center; }
    .plot-container img, .plot-container svg { max-width: 100%; height: auto; }
    .stats-table { border-collapse: collapse; margin: 10px 0; }
    .stats-table th, .stats-table td { border: 1px solid #ddd; padding: 6px 10px; text-align: right; }
    .stats-table th { background-color: #f2f2f2; }
    pre { background-color: #f8f8f8; border-left: 3px solid #4a90d9; padding: 10px; }
    .error { color: #b00020; }
"""


def _slugify(title: str, existing: List[str]) -> str:
    slug = re.sub(r'[^0-9A-Za-z가-힣]+', '-', title).strip('-').lower() or 'section'
    candidate = slug
    n = 2
    while candidate in existing:
        candidate = f"{slug}-{n}"
        n += 1
    return candidate


@dataclass
class ReportSection:
    """보고서 한 절 (HTML 조각 목록)"""

    title: str
    anchor: str
    blocks: List[str] = field(default_factory=list)


class CFAReport:
    """단계별로 내용을 추가하는 HTML 보고서"""

    def __init__(self, config: Optional[ReportConfig] = None):
        self.config = config if config is not None else ReportConfig()
        self.sections: List[ReportSection] = []
        self._figure_count = 0

    def _current(self) -> ReportSection:
        if not self.sections:
            self.add_section('Overview')
        return self.sections[-1]

    def add_section(self, title: str) -> ReportSection:
        anchor = _slugify(title, [s.anchor for s in self.sections])
        section = ReportSection(title=title, anchor=anchor)
        self.sections.append(section)
        return section

    def add_text(self, text: str) -> None:
        for paragraph in text.strip().split("\n\n"):
            self._current().blocks.append(f"<p>{html.escape(paragraph.strip())}</p>")

    def add_code(self, code: str) -> None:
        self._current().blocks.append(f"<pre>{html.escape(code.strip())}</pre>")

    def add_table(self, table: pd.DataFrame, caption: Optional[str] = None,
                  float_format: str = '{:.4f}') -> None:
        rendered = table.to_html(index=False, classes='stats-table', border=0,
                                 float_format=float_format.format, na_rep='-')
        if caption:
            self._current().blocks.append(f"<h4>{html.escape(caption)}</h4>")
        self._current().blocks.append(rendered)

    def add_figure(self, figure: plt.Figure, caption: Optional[str] = None) -> None:
        """
        matplotlib 그림 추가

        embed_images가 True면 PNG(base64)로 내장하고,
        False면 output_dir/figures에 PNG 파일로 저장한 뒤 상대 경로로 연결합니다.
        """
        alt = html.escape(caption or 'figure')
        if self.config.embed_images:
            buffer = io.BytesIO()
            figure.savefig(buffer, format='png', dpi=self.config.dpi, bbox_inches='tight')
            encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
            src = f"data:image/png;base64,{encoded}"
        else:
            figure_dir = Path(self.config.output_dir) / 'figures'
            figure_dir.mkdir(parents=True, exist_ok=True)
            self._figure_count += 1
            filename = f"figure_{self._figure_count:02d}.png"
            figure.savefig(figure_dir / filename, dpi=self.config.dpi, bbox_inches='tight')
            src = f"figures/{filename}"
        plt.close(figure)
        block = f'<div class="plot-container"><img src="{src}" alt="{alt}">'
        if caption:
            block += f"<p>{html.escape(caption)}</p>"
        self._current().blocks.append(block + "</div>")

    def add_diagram(self, diagram: graphviz.Digraph, caption: Optional[str] = None) -> None:
        """경로 다이어그램 내장 (Graphviz 실행 파일이 없으면 DOT 소스 표시)"""
        try:
            svg = diagram.pipe(format='svg').decode('utf-8')
            svg = svg[svg.find('<svg'):]
            block = f'<div class="plot-container">{svg}'
        except (graphviz.ExecutableNotFound, graphviz.CalledProcessError) as e:
            logger.warning(f"다이어그램 렌더링 실패, DOT 소스로 대체: {e}")
            block = f'<div class="plot-container"><pre>{html.escape(diagram.source)}</pre>'
        if caption:
            block += f"<p>{html.escape(caption)}</p>"
        self._current().blocks.append(block + "</div>")

    def add_error(self, message: str) -> None:
        self._current().blocks.append(f'<p class="error">{html.escape(message)}</p>')

    def render(self) -> str:
        """HTML 문자열 생성"""
        toc_items = "\n".join(
            f'<li><a href="#{s.anchor}">{html.escape(s.title)}</a></li>' for s in self.sections
        )
        body = []
        for section in self.sections:
            body.append(f'<div class="section" id="{section.anchor}">')
            body.append(f"<h2>{html.escape(section.title)}</h2>")
            body.extend(section.blocks)
            body.append("</div>")

        generated = pd.Timestamp.now().strftime('%Y-%m-%d %H:%M:%S')
        return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{html.escape(self.config.title)}</title>
<style>{_STYLE}</style>
</head>
<body>
<div class="header">
<h1>{html.escape(self.config.title)}</h1>
<p>Generated on: {generated}</p>
</div>
<div class="toc">
<h2>Contents</h2>
<ol>
{toc_items}
</ol>
</div>
{chr(10).join(body)}
</body>
</html>
"""

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        save_path = Path(path) if path is not None else self.config.report_path
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w', encoding='utf-8') as f:
            f.write(self.render())
        logger.info(f"HTML 보고서 저장 완료: {save_path}")
        return save_path
