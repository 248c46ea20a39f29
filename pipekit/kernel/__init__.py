"""pipekit kernel - the public API.

Application code should import from ``pipekit.kernel`` (or ``pipekit``),
never from kernel submodules.

The exports are grouped by category:
- Pipeline execution
- Steps and step entries
- Context and cancellation
- Results and run tracking
- Events and observers
- Configuration
- Exceptions
- Logging
"""

# ============================================================================
# 1. Pipeline Execution
# ============================================================================
# ============================================================================
# 6. Configuration
# ============================================================================
from pipekit.kernel.config import (
    LoggingConfig,
    PipekitConfig,
    PipelineDefaults,
    RegistryConfig,
    apply_logging_config,
    clear_config_cache,
    load_config,
)

# ============================================================================
# 3. Context and Cancellation
# ============================================================================
from pipekit.kernel.context import (
    CancellationToken,
    ExecutionContext,
    get_current_context,
)

# ============================================================================
# 2. Steps and Step Entries
# ============================================================================
# ============================================================================
# 4. Results and Run Tracking
# ============================================================================
from pipekit.kernel.domain import (
    ConditionalEntry,
    ExecutionStrategy,
    FunctionStep,
    ParallelEntry,
    PipelineExecutionResult,
    PipelineRunRecord,
    PipelineRunState,
    PipelineStatistics,
    PlainEntry,
    Step,
    StepEntry,
    StepExecutionResult,
    StepOutcome,
    TransformStep,
    conditional,
    parallel,
)

# ============================================================================
# 7. Exceptions
# ============================================================================
from pipekit.kernel.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    PipekitError,
    PipelineError,
    PipelineStateError,
    PipelineValidationError,
    ReentrancyError,
    ResourceNotFoundError,
    StepFailedError,
    StepTimeoutError,
    ValidationError,
)

# ============================================================================
# 8. Logging
# ============================================================================
from pipekit.kernel.logging import (
    configure_logging,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from pipekit.kernel.orchestration import Observer, ObserverManager, Pipeline

# ============================================================================
# 5. Events and Observers
# ============================================================================
from pipekit.kernel.orchestration.events import (
    ALL_EXECUTION_EVENTS,
    PIPELINE_EVENTS,
    STEP_EVENTS,
    Event,
    PerformanceMetricsObserver,
    PipelineCancelled,
    PipelineCompleted,
    PipelineFailed,
    PipelineStarted,
    SimpleLoggingObserver,
    StepCancelled,
    StepCompleted,
    StepFailed,
    StepRetrying,
    StepSkipped,
    StepStarted,
)
from pipekit.kernel.pipeline_builder import (
    PipelineBuilder,
    PipelineSettings,
    create_conditional,
    create_hybrid,
    create_parallel,
    create_sequential,
)
from pipekit.kernel.registry import PipelineRegistry

__all__ = [
    # Pipeline execution
    "Pipeline",
    "PipelineBuilder",
    "PipelineRegistry",
    "PipelineSettings",
    "create_conditional",
    "create_hybrid",
    "create_parallel",
    "create_sequential",
    # Steps and entries
    "ConditionalEntry",
    "ExecutionStrategy",
    "FunctionStep",
    "ParallelEntry",
    "PlainEntry",
    "Step",
    "StepEntry",
    "StepOutcome",
    "TransformStep",
    "conditional",
    "parallel",
    # Context and cancellation
    "CancellationToken",
    "ExecutionContext",
    "get_current_context",
    # Results and run tracking
    "PipelineExecutionResult",
    "PipelineRunRecord",
    "PipelineRunState",
    "PipelineStatistics",
    "StepExecutionResult",
    # Events and observers
    "ALL_EXECUTION_EVENTS",
    "PIPELINE_EVENTS",
    "STEP_EVENTS",
    "Event",
    "Observer",
    "ObserverManager",
    "PerformanceMetricsObserver",
    "PipelineCancelled",
    "PipelineCompleted",
    "PipelineFailed",
    "PipelineStarted",
    "SimpleLoggingObserver",
    "StepCancelled",
    "StepCompleted",
    "StepFailed",
    "StepRetrying",
    "StepSkipped",
    "StepStarted",
    # Configuration
    "LoggingConfig",
    "PipekitConfig",
    "PipelineDefaults",
    "RegistryConfig",
    "apply_logging_config",
    "clear_config_cache",
    "load_config",
    # Exceptions
    "ConfigurationError",
    "OperationCancelledError",
    "PipekitError",
    "PipelineError",
    "PipelineStateError",
    "PipelineValidationError",
    "ReentrancyError",
    "ResourceNotFoundError",
    "StepFailedError",
    "StepTimeoutError",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
]
