"""
Insight Aggregator

Runs every analyzer against the metrics store, turns their findings into
ranked, deduplicated, time-bounded insights and writes them through the
insights store. One analyzer failing never prevents the others from
finishing; the failures are reported alongside the insights.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from . import anomaly, capacity, cost, disk_predictor, performance
from .config import Settings, settings as default_settings
from .metrics import track_analyzer, track_cycle, track_summarizer
from .metrics_store import MetricsReader
from .persistence import InsightsPersistence, rank_insights
from .records import (
    AnomalyFinding,
    AnomalyReport,
    CapacityPrediction,
    CostReport,
    DiskRiskAssessment,
    Insight,
    PerformanceTrend,
    utc_now,
)
from .stats import max_severity, severity_rank
from .structured_logger import cycle_context, get_logger
from .summarizer import Summarizer

logger = logging.getLogger("homelab_insights.engine")
cycle_logger = get_logger("homelab_insights.engine.cycle")

INSIGHT_TTLS = {
    "anomaly": timedelta(hours=24),
    "capacity": timedelta(days=7),
    "performance": timedelta(days=7),
    "cost": timedelta(days=30),
    "general": timedelta(hours=24),
}


class AggregatorState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    SCORING = "scoring"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class InsightReport:
    """Insights from one cycle plus the analyzers that failed during it"""
    insights: List[Insight]
    failures: Dict[str, str] = field(default_factory=dict)
    state: AggregatorState = AggregatorState.DONE
    generated_at: Optional[datetime] = None

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insights": [i.to_dict() for i in self.insights],
            "failures": dict(self.failures),
            "partial": self.partial,
            "state": self.state.value,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }


def slugify(subject: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", subject.lower()).strip("-")
    return slug or "all"


def insight_id(insight_type: str, subject: str, generated_at: datetime) -> str:
    """Stable id for one (type, subject, TTL window) triple"""
    ttl_seconds = int(INSIGHT_TTLS[insight_type].total_seconds())
    window = int(generated_at.timestamp()) // ttl_seconds
    return f"{insight_type}-{slugify(subject)}-{window}"


def _make_insight(
    insight_type: str,
    subject: str,
    title: str,
    summary: str,
    details: str,
    severity: str,
    actions: Sequence[str],
    now: datetime,
) -> Insight:
    return Insight(
        id=insight_id(insight_type, subject, now),
        type=insight_type,
        title=title,
        summary=summary,
        details=details,
        severity=severity,
        actionable=len(actions) > 0,
        actions=list(actions),
        generated_at=now,
        expires_at=now + INSIGHT_TTLS[insight_type],
    )


def default_anomaly_summary(findings: Sequence[AnomalyFinding]) -> str:
    if not findings:
        return "No anomalies detected in system metrics."
    return f"Detected {len(findings)} anomalies in system metrics."


def score_anomalies(report: AnomalyReport, now: datetime) -> List[Insight]:
    if not report.detected:
        return []
    return [_make_insight(
        "anomaly",
        "system",
        title="Anomalies Detected",
        summary=report.summary,
        details=json.dumps([a.to_dict() for a in report.anomalies], indent=2),
        severity=max_severity(a.severity for a in report.anomalies),
        actions=[a.recommendation for a in report.anomalies],
        now=now,
    )]


def score_capacity(
    predictions: Sequence[CapacityPrediction],
    now: datetime,
    config: Settings = default_settings,
) -> List[Insight]:
    insights = []
    for prediction in predictions:
        days = prediction.days_until_full
        if days is None or days >= config.CAPACITY_WARNING_DAYS:
            continue
        insights.append(_make_insight(
            "capacity",
            prediction.resource,
            title=f"{prediction.resource.capitalize()} Capacity Warning",
            summary=prediction.trend_analysis,
            details=json.dumps(prediction.to_dict(), indent=2),
            severity="high" if days < config.CAPACITY_URGENT_DAYS else "medium",
            actions=prediction.recommendations,
            now=now,
        ))
    return insights


def score_disks(assessments: Sequence[DiskRiskAssessment], now: datetime) -> List[Insight]:
    insights = []
    for assessment in assessments:
        probability = assessment.failure_probability
        if probability <= 20:
            continue

        if probability > 70:
            severity = "critical"
        elif probability > 40:
            severity = "high"
        else:
            severity = "medium"

        summary = f"Disk {assessment.disk_name} has a {probability:.0f}% estimated failure probability"
        if assessment.days_until_failure is not None:
            summary += f", roughly {assessment.days_until_failure} days until failure"
        insights.append(_make_insight(
            "general",
            f"disk {assessment.disk_name}",
            title=f"Disk Failure Risk: {assessment.disk_name}",
            summary=summary + ".",
            details=json.dumps(assessment.to_dict(), indent=2),
            severity=severity,
            actions=[assessment.recommended_action],
            now=now,
        ))
    return insights


def score_trends(trends: Sequence[PerformanceTrend], now: datetime) -> List[Insight]:
    insights = []
    for trend in trends:
        subject = f"{trend.metric} ({trend.dimension})" if trend.dimension else trend.metric
        if trend.trend == "degrading":
            title, severity = f"Performance Degradation: {subject}", "medium"
        elif trend.trend == "volatile":
            title, severity = f"Volatile Performance: {subject}", "low"
        else:
            continue
        insights.append(_make_insight(
            "performance",
            subject,
            title=title,
            summary=trend.analysis,
            details=json.dumps(trend.to_dict(), indent=2),
            severity=severity,
            actions=trend.recommendations,
            now=now,
        ))
    return insights


def score_cost(
    report: CostReport,
    now: datetime,
    config: Settings = default_settings,
) -> List[Insight]:
    if not report.opportunities or report.total_potential_savings_usd <= config.COST_MIN_INSIGHT_SAVINGS_USD:
        return []
    return [_make_insight(
        "cost",
        "monthly",
        title="Cost Optimization Opportunities",
        summary=f"Potential savings: ${report.total_potential_savings_usd:.2f}/month",
        details=report.analysis,
        severity="info",
        actions=[o.title for o in report.opportunities],
        now=now,
    )]


def merge_insights(insights: Sequence[Insight]) -> List[Insight]:
    """Deduplicate by id keeping the most severe, then rank"""
    by_id: Dict[str, Insight] = {}
    for insight in insights:
        current = by_id.get(insight.id)
        if current is None or severity_rank(insight.severity) > severity_rank(current.severity):
            by_id[insight.id] = insight
    return rank_insights(list(by_id.values()))


class InsightAggregator:
    """
    Composes the analyzers over an injected metrics reader, insights store
    and optional summarizer.

    Cycles never overlap; a second ``generate()`` waits for the running one.
    """

    def __init__(
        self,
        reader: MetricsReader,
        persistence: InsightsPersistence,
        summarizer: Optional[Summarizer] = None,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.reader = reader
        self.persistence = persistence
        self.summarizer = summarizer
        self.config = config
        self.clock = clock
        self.state = AggregatorState.IDLE
        self.last_report: Optional[InsightReport] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Analyzer passes (synchronous, run in worker threads)
    # ------------------------------------------------------------------

    def _collect_anomalies(self, now: datetime, window_hours: Optional[int] = None) -> List[AnomalyFinding]:
        return anomaly.detect_anomalies(self.reader, window_hours, self.config, now=now)

    def _collect_capacity(self, now: datetime, resource: Optional[str] = None) -> List[CapacityPrediction]:
        resources = [resource] if resource else list(capacity.RESOURCES)
        predictions = []
        for name in resources:
            prediction = capacity.predict_capacity(self.reader, name, self.config, now=now)
            if prediction:
                predictions.append(prediction)
        return predictions

    def _collect_disks(self, now: datetime) -> List[DiskRiskAssessment]:
        return [
            disk_predictor.predict_disk_failure(self.reader, disk, self.config, now=now)
            for disk in disk_predictor.monitored_disks(self.reader, self.config, now=now)
        ]

    def _collect_trends(self, now: datetime, period_days: Optional[int] = None) -> List[PerformanceTrend]:
        return performance.analyze_trends(self.reader, period_days, self.config, now=now)

    def _collect_cost(self, now: datetime) -> CostReport:
        return cost.generate_cost_optimizations(self.reader, self.config, now=now)

    async def _run_pass(self, name: str, func: Callable, *args) -> Tuple[str, Any, Optional[Exception]]:
        start = time.time()
        try:
            result = await asyncio.to_thread(func, *args)
        except Exception as e:
            track_analyzer(name, (time.time() - start) * 1000, success=False)
            logger.warning(f"Analyzer {name} failed: {e}")
            return name, None, e
        track_analyzer(name, (time.time() - start) * 1000)
        return name, result, None

    # ------------------------------------------------------------------
    # Summarizer
    # ------------------------------------------------------------------

    async def _narrate(self, findings: List[Dict[str, Any]], topic: str) -> Optional[str]:
        """Summarizer text, or None when absent, unavailable, failing or too slow"""
        if self.summarizer is None or not findings:
            return None

        summarizer = self.summarizer

        async def call() -> Optional[str]:
            if not await summarizer.is_available():
                return None
            return await summarizer.summarize(findings, topic)

        try:
            text = await asyncio.wait_for(call(), timeout=self.config.SUMMARIZER_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            track_summarizer(summarizer.name, "timeout")
            logger.warning(
                f"Summarizer {summarizer.name} timed out after "
                f"{self.config.SUMMARIZER_TIMEOUT_SECONDS}s, keeping default text"
            )
            return None
        except Exception as e:
            track_summarizer(summarizer.name, "error")
            logger.warning(f"Summarizer {summarizer.name} failed, keeping default text: {e}")
            return None

        track_summarizer(summarizer.name, "success" if text else "unavailable")
        return text

    # ------------------------------------------------------------------
    # Generation cycle
    # ------------------------------------------------------------------

    def _persist(
        self,
        findings: Sequence[AnomalyFinding],
        predictions: Sequence[CapacityPrediction],
        assessments: Sequence[DiskRiskAssessment],
        insights: Sequence[Insight],
        now: datetime,
    ) -> None:
        for finding in findings:
            self.persistence.append_anomaly(finding, detected_at=now)
        for prediction in predictions:
            self.persistence.append_capacity_prediction(prediction, predicted_at=now)
        for assessment in assessments:
            self.persistence.append_disk_prediction(assessment, predicted_at=now)
        self.persistence.upsert_insights(insights)

    async def generate(self) -> InsightReport:
        """Run one full Collecting, Scoring, Persisting cycle"""
        async with self._lock:
            with cycle_context():
                start = time.time()
                report = await self._generate()
                cycle_logger.log_cycle(
                    report.state.value,
                    len(report.insights),
                    report.failures,
                    (time.time() - start) * 1000,
                )
                track_cycle(report.insights, failed=report.partial)
                self.last_report = report
                return report

    async def _generate(self) -> InsightReport:
        now = self.clock()
        failures: Dict[str, str] = {}

        self.state = AggregatorState.COLLECTING
        results = await asyncio.gather(
            self._run_pass("anomaly", self._collect_anomalies, now),
            self._run_pass("capacity", self._collect_capacity, now),
            self._run_pass("disk", self._collect_disks, now),
            self._run_pass("performance", self._collect_trends, now),
            self._run_pass("cost", self._collect_cost, now),
        )
        collected: Dict[str, Any] = {}
        for name, result, error in results:
            if error is not None:
                failures[name] = str(error)
            else:
                collected[name] = result

        self.state = AggregatorState.SCORING
        findings: List[AnomalyFinding] = collected.get("anomaly", [])
        predictions: List[CapacityPrediction] = collected.get("capacity", [])
        assessments: List[DiskRiskAssessment] = collected.get("disk", [])
        anomaly_report = AnomalyReport(
            detected=bool(findings),
            anomalies=findings,
            summary=default_anomaly_summary(findings),
            timestamp=now,
        )

        scored = score_anomalies(anomaly_report, now)
        scored += score_capacity(predictions, now, self.config)
        scored += score_disks(assessments, now)
        scored += score_trends(collected.get("performance", []), now)
        if "cost" in collected:
            scored += score_cost(collected["cost"], now, self.config)
        insights = merge_insights(scored)

        self.state = AggregatorState.PERSISTING
        try:
            await asyncio.to_thread(self._persist, findings, predictions, assessments, insights, now)
        except Exception as e:
            failures["persistence"] = str(e)
            logger.error(f"Failed to persist insight cycle: {e}")

        narrative = await self._narrate([f.to_dict() for f in findings], "anomalies")
        if narrative:
            anomaly_report.summary = narrative
            for insight in insights:
                if insight.type == "anomaly":
                    insight.summary = narrative
                    if "persistence" not in failures:
                        try:
                            await asyncio.to_thread(self.persistence.upsert_insights, [insight])
                        except Exception as e:
                            failures["persistence"] = str(e)
                            logger.error(f"Failed to store summarized anomaly insight: {e}")

        self.state = AggregatorState.DONE
        return InsightReport(
            insights=insights,
            failures=failures,
            state=self.state,
            generated_at=now,
        )

    # ------------------------------------------------------------------
    # Direct accessors
    # ------------------------------------------------------------------

    async def detect_anomalies(self, window_hours: Optional[int] = None) -> AnomalyReport:
        """Anomaly pass over the given window, narrated when a summarizer answers"""
        now = self.clock()
        findings = await asyncio.to_thread(self._collect_anomalies, now, window_hours)
        summary = await self._narrate([f.to_dict() for f in findings], "anomalies")
        return AnomalyReport(
            detected=bool(findings),
            anomalies=findings,
            summary=summary or default_anomaly_summary(findings),
            timestamp=now,
        )

    async def predict_capacity(self, resource: Optional[str] = None) -> List[CapacityPrediction]:
        """Forecasts for one resource, or every resource when None"""
        return await asyncio.to_thread(self._collect_capacity, self.clock(), resource)

    async def predict_disk_failure(self, disk_name: str) -> DiskRiskAssessment:
        """Assess one disk and append the assessment to prediction history"""
        now = self.clock()
        assessment = await asyncio.to_thread(
            disk_predictor.predict_disk_failure, self.reader, disk_name, self.config, now
        )
        await asyncio.to_thread(self.persistence.append_disk_prediction, assessment, now)
        return assessment

    async def analyze_trends(self, period_days: Optional[int] = None) -> List[PerformanceTrend]:
        return await asyncio.to_thread(self._collect_trends, self.clock(), period_days)

    async def generate_cost_optimizations(self) -> CostReport:
        report = await asyncio.to_thread(self._collect_cost, self.clock())
        if not report.opportunities:
            return report

        findings = [{"current_state": report.current_state}]
        findings += [o.to_dict() for o in report.opportunities]
        analysis = await self._narrate(findings, "cost")
        if analysis:
            report.analysis = analysis
        return report
