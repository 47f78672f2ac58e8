"""ai-chain: run prompt pipelines across AI providers."""

__version__ = "0.1.0"

from ai_chain.auth import (
    AccountBasedAuth,
    ApiKeyAuth,
    AuthManager,
    AuthMethod,
    BrowserAuth,
    CliAuth,
)
from ai_chain.context import Context
from ai_chain.errors import (
    AuthResolutionError,
    ContextValidationError,
    FieldNotFoundError,
    JsonParseError,
    ParseError,
    PipelineError,
    PipelineLoadError,
    ProviderInvocationError,
    StepExecutionError,
    TransformError,
    TransformOperationError,
    UnknownProviderError,
)
from ai_chain.executor import PipelineExecutor
from ai_chain.models import (
    Capabilities,
    ExecutionConfig,
    Message,
    MessageRole,
    PipelineStep,
    Response,
    StepResult,
)
from ai_chain.observers import StepObserver, StepRecorder
from ai_chain.parser import PipelineBuilder, format_pipeline, parse, validate_providers
from ai_chain.pipeline_logger import configure_logging
from ai_chain.transforms import (
    FallbackBehavior,
    IdentityTransform,
    JsonataTransform,
    JsonExtractorTransform,
    SchemaTransform,
    SummarizerTransform,
    Transform,
)

__all__ = [
    "AccountBasedAuth",
    "ApiKeyAuth",
    "AuthManager",
    "AuthMethod",
    "AuthResolutionError",
    "BrowserAuth",
    "Capabilities",
    "CliAuth",
    "configure_logging",
    "Context",
    "ContextValidationError",
    "ExecutionConfig",
    "FallbackBehavior",
    "FieldNotFoundError",
    "format_pipeline",
    "IdentityTransform",
    "JsonataTransform",
    "JsonExtractorTransform",
    "JsonParseError",
    "Message",
    "MessageRole",
    "parse",
    "ParseError",
    "PipelineBuilder",
    "PipelineError",
    "PipelineExecutor",
    "PipelineLoadError",
    "PipelineStep",
    "ProviderInvocationError",
    "Response",
    "SchemaTransform",
    "StepExecutionError",
    "StepObserver",
    "StepRecorder",
    "StepResult",
    "SummarizerTransform",
    "Transform",
    "TransformError",
    "TransformOperationError",
    "UnknownProviderError",
    "validate_providers",
]
