"""
Render defaults for plan compilation and ffmpeg filter graphs.

Every recognized render option and its effect lives here:
- output format defaults and aspect-ratio presets
- pacing -> clip length table
- transition name -> xfade effect table
- motion effect -> zoompan formula table
- timeline duration bounds
- encoding profiles selected by fallback mode
"""

from typing import Dict, List, NamedTuple

from pydantic import BaseModel, Field


class OutputFormat(BaseModel):
    """Container/codec settings a compiled plan renders to"""
    container: str = Field("mp4", description="Output container")
    width: int = Field(1080, description="Frame width in pixels")
    height: int = Field(1920, description="Frame height in pixels")
    fps: int = Field(30, description="Output frame rate")
    bitrate_kbps: int = Field(2500, description="Target video bitrate")
    audio_bitrate_kbps: int = Field(128, description="Target audio bitrate")
    codec_hint: str = Field("h264", description="Preferred video codec")


class RatioPreset(NamedTuple):
    width: int
    height: int
    crop: str


class EncodingProfile(NamedTuple):
    name: str
    preset: str
    crf: int
    use_transitions: bool
    use_motion: bool


DEFAULT_OUTPUT_FORMAT = OutputFormat()

DEFAULT_RATIO = "9:16"

RATIO_PRESETS: Dict[str, RatioPreset] = {
    "9:16": RatioPreset(1080, 1920, "crop=ih*9/16:ih"),
    "1:1": RatioPreset(1080, 1080, "crop=min(iw\\,ih):min(iw\\,ih)"),
    "16:9": RatioPreset(1920, 1080, "crop=iw:iw*9/16"),
    "4:5": RatioPreset(1080, 1350, "crop=ih*4/5:ih"),
}

# Seconds each source clip contributes to an assembled output
PACING_CLIP_SECONDS: Dict[str, float] = {
    "fast": 1.5,
    "medium": 3.0,
    "slow": 5.0,
}
DEFAULT_PACING = "fast"

DEFAULT_MAX_DURATION_SEC = 30.0

TRANSITION_EFFECTS: Dict[str, str] = {
    "whip-pan": "wipeleft",
    "slide": "slideleft",
    "zoom": "circlecrop",
    "glitch": "pixelize",
}
DEFAULT_TRANSITION_EFFECT = "fade"
TRANSITION_DURATION_SEC = 0.5

# Still-image motion. Formulas are zoompan expressions; {frames} is
# substituted with duration_sec * MOTION_FPS.
MOTION_FPS = 25
DEFAULT_MOTION_DURATION_SEC = 3.0
DEFAULT_MOTION_EFFECT = "ken-burns"
MOTION_EFFECTS: Dict[str, str] = {
    "ken-burns": "z='min(zoom+0.0015,1.5)':x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'",
    "parallax": "z='1.15':x='(iw-iw/zoom)*on/{frames}':y='ih/2-(ih/zoom/2)+(ih-ih/zoom)*0.1*sin(on/{frames}*PI)'",
    "zoom": "z='min(zoom+0.01,2.0)':x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'",
    "pan": "z='1.2':x='(iw-iw/zoom)*on/{frames}':y='ih/2-(ih/zoom/2)'",
    "shake": "z='1.1':x='iw/2-(iw/zoom/2)+10*sin(on*0.9)':y='ih/2-(ih/zoom/2)+10*cos(on*1.3)'",
}

# Music sync
DEFAULT_MUSIC_BPM = 120
MUSIC_VOLUME = 0.3

SUBTITLE_STYLE = "FontSize=24,FontName=Arial,PrimaryColour=&HFFFFFF,OutlineColour=&H000000,Outline=2"

# Timeline validation bounds (advisory)
MIN_OUTPUT_DURATION_MS = 15000
MAX_OUTPUT_DURATION_MS = 30000

# Voiceover fade-out: 5% of the output, capped
VOICEOVER_FADE_OUT_RATIO = 0.05
VOICEOVER_FADE_OUT_MAX_MS = 500

STANDARD_PROFILE = EncodingProfile("standard", preset="fast", crf=23, use_transitions=True, use_motion=True)
SAFE_PROFILE = EncodingProfile("safe", preset="veryfast", crf=28, use_transitions=False, use_motion=False)

COMMON_OUTPUT_ARGS: List[str] = ["-pix_fmt", "yuv420p", "-movflags", "+faststart"]


def pacing_seconds(pacing: str) -> float:
    return PACING_CLIP_SECONDS.get(pacing, PACING_CLIP_SECONDS[DEFAULT_PACING])


def transition_effect(name: str) -> str:
    return TRANSITION_EFFECTS.get(name, DEFAULT_TRANSITION_EFFECT)


def motion_frames(duration_sec: float) -> int:
    return int(round(duration_sec * MOTION_FPS))
