"""EAR — Decoding & measurement layer.

- Decoder: libsndfile Ogg Vorbis packets (plus in-memory PCM source)
- Remap: any channel layout → 1/2 measured channels with BS.1770 roles
- Loudness: incremental K-weighted, gated integrated loudness
"""

from oggnorm.ear.decoder import (
    ArrayDecoder,
    FrameDecoder,
    SoundFileDecoder,
    open_decoder,
)
from oggnorm.ear.loudness import (
    LoudnessAccumulator,
    LoudnessMeter,
    gated_loudness,
    k_weighting_sos,
)
from oggnorm.ear.remap import (
    ChannelLayout,
    ChannelRemapper,
    ChannelRole,
    RemapPlan,
    plan_for,
)

__all__ = [
    "ArrayDecoder",
    "FrameDecoder",
    "SoundFileDecoder",
    "open_decoder",
    "LoudnessAccumulator",
    "LoudnessMeter",
    "gated_loudness",
    "k_weighting_sos",
    "ChannelLayout",
    "ChannelRemapper",
    "ChannelRole",
    "RemapPlan",
    "plan_for",
]
