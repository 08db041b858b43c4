PIPELINE_STARTED = "pipeline.started"
PIPELINE_STAGE_ENTERED = "pipeline.stage_entered"
PIPELINE_HEARTBEAT = "pipeline.heartbeat"
PIPELINE_COMPLETED = "pipeline.completed"
PIPELINE_FAILED = "pipeline.failed"
PIPELINE_STOPPED = "pipeline.stopped"

AGENT_COMPLETED = "agent.completed"
AGENT_FALLBACK = "agent.fallback"

CACHE_HIT = "cache.hit"
CACHE_MISS = "cache.miss"
CACHE_SHAPE_MISMATCH = "cache.shape_mismatch"
CACHE_COMPUTE_FAILED = "cache.compute_failed"
CACHE_INVALIDATED = "cache.invalidated"
