"""sdk - shared building blocks for orderstream services

Contains reusable modules for:
    - transport: Durable pub/sub with explicit acknowledgement (NATS JetStream, in-process)
    - logging: Structured logging with rotating, disk-capped file output
"""

__version__ = "1.0.0"
