from .tip_stream import SSEDecoder, TipStreamConsumer, stream_tip

__all__ = ["SSEDecoder", "TipStreamConsumer", "stream_tip"]
