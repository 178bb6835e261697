"""
Scripted content and playback for the fallback paths.

When the live path cannot produce a result, a facade replays a fixed script
through the same progress-event contract (running then completed per step)
and returns these deterministic results labelled source="fallback".
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from ..memory.progress_bus import ProgressBus
from ..models import (
    ChangeAction,
    CodeChange,
    DeploymentResult,
    NewsArticle,
    ProgressStatus,
    WorkflowProgress,
)


logger = logging.getLogger(__name__)

FALLBACK_STEP = "fallback"


class ExternalServiceError(Exception):
    """The live path produced no usable output; the facade switches to the scripted path."""


# News

FALLBACK_SUMMARY = (
    "近期中国AI产品市场呈现蓬勃发展态势。百度发布文心一言4.0版本，大幅提升多模态能力；"
    "阿里巴巴开源通义千问72B模型，性能表现优异；字节跳动推出AI编程助手，进军开发者工具市场。"
    "这些进展标志着中国AI产业正在加速追赶国际领先水平。"
)

FALLBACK_TRANSLATION = (
    "China's AI product market is showing robust growth momentum. Baidu released Wenxin "
    "Yiyan 4.0 with significantly enhanced multimodal capabilities; Alibaba open-sourced the "
    "Tongyi Qianwen 72B model with excellent performance; ByteDance launched an AI coding "
    "assistant, entering the developer tools market. These developments mark China's AI "
    "industry accelerating to catch up with international leading standards."
)


def fallback_articles() -> List[NewsArticle]:
    now = datetime.now(timezone.utc).isoformat()
    return [
        NewsArticle(
            title="百度文心一言发布新版本，支持多模态理解",
            description="百度宣布文心一言4.0版本正式上线，新增图像理解和生成能力，支持更复杂的对话场景",
            url="https://example.com/news1",
            published_at=now,
            source="TechChina",
        ),
        NewsArticle(
            title="阿里巴巴通义千问开源新模型，性能超越GPT-3.5",
            description="阿里云发布通义千问72B开源模型，在多项基准测试中表现优异",
            url="https://example.com/news2",
            published_at=now,
            source="AI Weekly",
        ),
        NewsArticle(
            title="字节跳动推出AI编程助手，对标GitHub Copilot",
            description="字节跳动发布豆包编程助手，支持多种编程语言和IDE集成",
            url="https://example.com/news3",
            published_at=now,
            source="Developer News",
        ),
    ]


def placeholder_article() -> NewsArticle:
    """Stand-in used when live researcher output had no parsable article."""
    return NewsArticle(
        title="AI技术持续突破",
        description="人工智能领域取得重大进展",
        url="https://example.com/news",
        source="AI News",
    )


# Repository

FALLBACK_APP_PY = '''# Modified app.py with new features
from flask import Flask, render_template, jsonify

app = Flask(__name__)

@app.route("/")
def home():
    return render_template('index.html')

@app.route("/api/health")
def health():
    return jsonify({"status": "ok", "version": "2.0"})

if __name__ == "__main__":
    app.run(debug=True)'''

FALLBACK_STYLE_CSS = '''/* Enhanced styles */
body { font-family: Arial, sans-serif; background: #f5f5f5; }
.container { max-width: 1200px; margin: 0 auto; padding: 20px; }'''

FALLBACK_REPOSITORY_SUMMARY = (
    "Tech stack: Python, Flask, HTML/CSS. Modification points: update UI styling, "
    "add a health API endpoint, improve error handling. Deployment plan: merge after "
    "the CI pipeline passes."
)


def fallback_changes() -> List[CodeChange]:
    return [
        CodeChange(path="app.py", content=FALLBACK_APP_PY, action=ChangeAction.update),
        CodeChange(path="static/css/style.css", content=FALLBACK_STYLE_CSS, action=ChangeAction.create),
    ]


def fallback_deployment() -> DeploymentResult:
    return DeploymentResult(success=True, merged=False, duration_seconds=0.0)


# General

def fallback_general_result(description: str) -> str:
    return (
        f"Plan for \"{description}\":\n"
        "1. Clarify the goal and the expected output\n"
        "2. Research the topic and collect supporting material\n"
        "3. Produce the deliverable and review it against the goal\n\n"
        "The completion endpoint is unavailable, so this is an outline only."
    )


@dataclass(frozen=True)
class ScriptedStep:
    """One step of a scripted run."""
    step_id: str
    agent_id: str
    message: str
    result: Optional[Any] = None


class ScriptedPlayback:
    """Replays scripted steps as progress events."""

    def __init__(
        self,
        bus: ProgressBus,
        step_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bus = bus
        self.step_delay = step_delay
        self.sleep = sleep

    def announce(self, workflow_id: str, error: str) -> None:
        """Publish the failure that caused the switch to the scripted path."""
        logger.warning(f"Workflow {workflow_id}: switching to scripted fallback: {error}")
        self.bus.publish(WorkflowProgress(
            workflow_id=workflow_id,
            step_id=FALLBACK_STEP,
            agent_id="system",
            status=ProgressStatus.failed,
            progress=0,
            message=f"Live execution failed, using scripted results: {error}",
        ))

    async def play(self, workflow_id: str, steps: Sequence[ScriptedStep]) -> None:
        for step in steps:
            self.bus.publish(WorkflowProgress(
                workflow_id=workflow_id,
                step_id=step.step_id,
                agent_id=step.agent_id,
                status=ProgressStatus.running,
                progress=0,
                message=step.message,
            ))
            if self.step_delay:
                await self.sleep(self.step_delay)
            self.bus.publish(WorkflowProgress(
                workflow_id=workflow_id,
                step_id=step.step_id,
                agent_id=step.agent_id,
                status=ProgressStatus.completed,
                progress=100,
                message=step.message,
                result=step.result,
            ))
