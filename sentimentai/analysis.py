"""
Normalization of inference server responses.

The server answers in one of two shapes:

- ``EmotionSentimentSummary``: ``{"emotion": {"prediction", "probabilities"},
  "sentiment": {...}}`` describing the whole video.
- ``UtteranceList``: ``{"utterances": [...]}`` already segmented.

Both become an :class:`AnalysisResult`. Normalization never raises; missing or
malformed fields degrade to empty values.
"""

from __future__ import annotations

import math
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, List

from sentimentai.models import AnalysisResult, AnalysisSummary, LabelScore, Utterance


class ResponseShape(str, Enum):
    EMOTION_SENTIMENT_SUMMARY = "emotion_sentiment_summary"
    UTTERANCE_LIST = "utterance_list"
    UNKNOWN = "unknown"


def _unwrap(raw: Any) -> Any:
    # Some servers (and our own API) wrap the payload as {"analysis": {...}}.
    if isinstance(raw, dict) and "analysis" in raw and isinstance(raw["analysis"], dict):
        return raw["analysis"]
    return raw


def detect_shape(raw: Any) -> ResponseShape:
    raw = _unwrap(raw)
    if not isinstance(raw, dict):
        return ResponseShape.UNKNOWN
    if "utterances" in raw:
        return ResponseShape.UTTERANCE_LIST
    return ResponseShape.EMOTION_SENTIMENT_SUMMARY


def _to_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return result if math.isfinite(result) else default


def _label_scores(value: Any) -> List[LabelScore]:
    """Accept a ``{label: prob}`` mapping or a ``[{label, confidence}]`` list."""
    if isinstance(value, dict):
        return [LabelScore(str(label), _to_float(conf)) for label, conf in value.items()]
    if isinstance(value, list):
        scores = []
        for item in value:
            if not isinstance(item, dict) or "label" not in item:
                continue
            conf = item.get("confidence", item.get("score", item.get("probability")))
            scores.append(LabelScore(str(item["label"]), _to_float(conf)))
        return scores
    return []


def _probabilities(block: Any) -> List[LabelScore]:
    if not isinstance(block, dict):
        return []
    return _label_scores(block.get("probabilities"))


def _prediction(block: Any) -> str:
    if isinstance(block, dict) and block.get("prediction") is not None:
        return str(block["prediction"])
    return "unknown"


def _from_summary(raw: Dict[str, Any]) -> AnalysisResult:
    emotion = raw.get("emotion")
    sentiment = raw.get("sentiment")
    if emotion is None and sentiment is None:
        return AnalysisResult()

    return AnalysisResult(utterances=[
        Utterance(
            start_time=0.0,
            end_time=_to_float(raw.get("duration")),
            text=(
                f"Overall video analysis - Primary emotion: {_prediction(emotion)}, "
                f"Primary sentiment: {_prediction(sentiment)}"
            ),
            emotions=_probabilities(emotion),
            sentiments=_probabilities(sentiment),
        )
    ])


def _from_utterances(items: Any) -> AnalysisResult:
    if not isinstance(items, list):
        return AnalysisResult()

    utterances = []
    for item in items:
        if not isinstance(item, dict):
            continue
        start = _to_float(item.get("start_time", item.get("startTime")))
        end = _to_float(item.get("end_time", item.get("endTime")), default=start)
        text = item.get("text")
        utterances.append(
            Utterance(
                start_time=start,
                end_time=end,
                text=text if isinstance(text, str) else "",
                emotions=_label_scores(item.get("emotions")),
                sentiments=_label_scores(item.get("sentiments")),
            )
        )
    return AnalysisResult(utterances=utterances)


def normalize_analysis(raw: Any) -> AnalysisResult:
    """Convert any inference server response into an AnalysisResult."""
    shape = detect_shape(raw)
    raw = _unwrap(raw)
    if shape == ResponseShape.UTTERANCE_LIST:
        return _from_utterances(raw.get("utterances"))
    if shape == ResponseShape.EMOTION_SENTIMENT_SUMMARY:
        return _from_summary(raw)
    return AnalysisResult()


def _average(groups: Dict[str, List[float]]) -> List[LabelScore]:
    averaged = [LabelScore(label, sum(vals) / len(vals)) for label, vals in groups.items()]
    return sorted(averaged, key=lambda s: s.confidence, reverse=True)


def summarize(result: AnalysisResult) -> AnalysisSummary:
    """Average each label's confidence across utterances, highest first."""
    emotions: Dict[str, List[float]] = defaultdict(list)
    sentiments: Dict[str, List[float]] = defaultdict(list)

    for utterance in result.utterances:
        for score in utterance.emotions:
            emotions[score.label].append(score.confidence)
        for score in utterance.sentiments:
            sentiments[score.label].append(score.confidence)

    return AnalysisSummary(emotions=_average(emotions), sentiments=_average(sentiments))
