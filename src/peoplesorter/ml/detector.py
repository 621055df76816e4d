"""Object detection on top of an ONNX YOLOv8 session.

The detector is treated as a black box by the rest of the application:
``detect(image)`` returns labelled, confidence-scored boxes and nothing
else about the model leaks out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from numpy.typing import NDArray

from peoplesorter.ml.model_manager import get_spec
from peoplesorter.ml.preprocessing import Letterbox, letterbox

if TYPE_CHECKING:
    from onnxruntime import InferenceSession

    from peoplesorter.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

SCORE_THRESHOLD: float = 0.5
IOU_THRESHOLD: float = 0.45
MAX_DETECTIONS: int = 20

# Added to boxes per class id so NMS never suppresses across classes.
_CLASS_OFFSET: float = 4096.0

COCO_LABELS: tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat",
    "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack",
    "umbrella", "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball",
    "kite", "baseball bat", "baseball glove", "skateboard", "surfboard", "tennis racket",
    "bottle", "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple",
    "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair",
    "couch", "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear", "hair drier",
    "toothbrush",
)  # fmt: skip


@dataclass(frozen=True)
class Prediction:
    """A single detected object.

    ``bbox`` is ``(x, y, width, height)`` in pixels of the original image.
    """

    label: str
    score: float
    bbox: tuple[float, float, float, float]


class Detector(Protocol):
    """Protocol for object detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[Prediction]:
        """Detect objects in an image.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            Predictions sorted by score (descending).
        """
        ...


def nms(boxes: NDArray[np.float32], scores: NDArray[np.float32], iou_threshold: float) -> list[int]:
    """Greedy non-maximum suppression over ``x1, y1, x2, y2`` boxes."""
    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = np.clip(x2 - x1, 0, None) * np.clip(y2 - y1, 0, None)
    order = scores.argsort()[::-1]

    keep: list[int] = []
    while order.size > 0:
        best = int(order[0])
        keep.append(best)
        rest = order[1:]
        inter_w = np.clip(np.minimum(x2[best], x2[rest]) - np.maximum(x1[best], x1[rest]), 0, None)
        inter_h = np.clip(np.minimum(y2[best], y2[rest]) - np.maximum(y1[best], y1[rest]), 0, None)
        inter = inter_w * inter_h
        union = areas[best] + areas[rest] - inter
        iou = np.where(union > 0, inter / np.maximum(union, 1e-9), 0.0)
        order = rest[iou <= iou_threshold]
    return keep


def postprocess(
    output: NDArray[np.float32],
    geometry: Letterbox,
    image_shape: tuple[int, ...],
    *,
    labels: tuple[str, ...] = COCO_LABELS,
    score_threshold: float = SCORE_THRESHOLD,
    iou_threshold: float = IOU_THRESHOLD,
    max_detections: int = MAX_DETECTIONS,
) -> list[Prediction]:
    """Turn raw YOLOv8 output into predictions in original image pixels.

    Args:
        output: Model output, shape (1, 4 + num_classes, N) or (1, N, 4 + num_classes).
        geometry: Letterbox geometry used to build the model input.
        image_shape: Shape of the original HxWx3 image.
    """
    preds = np.squeeze(output, axis=0)
    if preds.shape[0] == 4 + len(labels):
        preds = preds.T

    class_scores = preds[:, 4:]
    class_ids = class_scores.argmax(axis=1)
    scores = class_scores[np.arange(len(class_ids)), class_ids]

    mask = scores >= score_threshold
    if not mask.any():
        return []
    cxcywh = preds[mask, :4]
    class_ids = class_ids[mask]
    scores = scores[mask]

    boxes = np.empty_like(cxcywh)
    boxes[:, 0] = cxcywh[:, 0] - cxcywh[:, 2] / 2
    boxes[:, 1] = cxcywh[:, 1] - cxcywh[:, 3] / 2
    boxes[:, 2] = cxcywh[:, 0] + cxcywh[:, 2] / 2
    boxes[:, 3] = cxcywh[:, 1] + cxcywh[:, 3] / 2

    keep = nms(boxes + class_ids[:, None] * _CLASS_OFFSET, scores, iou_threshold)[:max_detections]

    height, width = image_shape[:2]
    predictions: list[Prediction] = []
    for idx in keep:
        x1, y1, x2, y2 = boxes[idx]
        x1 = float(np.clip((x1 - geometry.pad_x) / geometry.ratio, 0, width))
        x2 = float(np.clip((x2 - geometry.pad_x) / geometry.ratio, 0, width))
        y1 = float(np.clip((y1 - geometry.pad_y) / geometry.ratio, 0, height))
        y2 = float(np.clip((y2 - geometry.pad_y) / geometry.ratio, 0, height))
        predictions.append(
            Prediction(
                label=labels[int(class_ids[idx])],
                score=float(scores[idx]),
                bbox=(x1, y1, x2 - x1, y2 - y1),
            )
        )
    return predictions


class YoloOnnxDetector:
    """YOLOv8 detector running on an ONNX Runtime session."""

    def __init__(self, session: InferenceSession, model_name: str, input_size: int) -> None:
        self._session = session
        self._model_name = model_name
        self._input_size = input_size
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: NDArray[np.uint8]) -> list[Prediction]:
        tensor, geometry = letterbox(image, self._input_size)
        outputs = self._session.run(None, {self._input_name: tensor})
        return postprocess(outputs[0], geometry, image.shape)


def load_detector(manager: ModelManager, model_name: str) -> YoloOnnxDetector:
    """Build a detector for a registered model, downloading it if needed."""
    spec = get_spec(model_name)
    session = manager.get_session(model_name)
    logger.info("Detector %s ready (input %dx%d)", model_name, spec.input_size, spec.input_size)
    return YoloOnnxDetector(session, model_name, spec.input_size)
