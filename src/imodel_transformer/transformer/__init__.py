from imodel_transformer.transformer.clone_context import CloneContext
from imodel_transformer.transformer.deferred import DeferredEntity, DeferredQueue
from imodel_transformer.transformer.exporter import Exporter, ExportHandler, ExportStatistics
from imodel_transformer.transformer.importer import ImportCounters, Importer, KindCounters
from imodel_transformer.transformer.report import (
    TransformIssue,
    TransformIssueCategory,
    TransformIssueSeverity,
    TransformReport,
)
from imodel_transformer.transformer.transformer import Transformer

__all__ = [
    "CloneContext",
    "DeferredEntity",
    "DeferredQueue",
    "Exporter",
    "ExportHandler",
    "ExportStatistics",
    "ImportCounters",
    "Importer",
    "KindCounters",
    "TransformIssue",
    "TransformIssueCategory",
    "TransformIssueSeverity",
    "TransformReport",
    "Transformer",
]
