"""Infrastructure layer — audio devices and observability for the graph server.

Modules:
    audio       Audio backends (null render thread, sounddevice/PortAudio).
    metrics     Prometheus metrics registry.
"""
