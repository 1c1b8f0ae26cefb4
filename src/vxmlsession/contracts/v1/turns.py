from __future__ import annotations

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator


DEFAULT_DONE_RECORDING_WAV = "http://resources.tellme.com/audio/earcons/beep_end.wav"


class AudioArgs(BaseModel):
    """One spoken fragment: synthesized text, an audio file, or recorded data."""
    tts: Optional[str] = None
    wav: Optional[str] = None
    data: Optional[str] = None
    pause: Optional[PositiveInt] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_combination(self) -> "AudioArgs":
        if not (self.tts or self.wav or self.data or self.pause):
            raise ValueError("must specify at least one of 'wav', 'tts', 'data' or 'pause'")
        if self.wav and self.data:
            raise ValueError("can't specify both 'wav' and 'data'")
        if self.pause and (self.wav or self.tts or self.data):
            raise ValueError("can't specify both 'pause' and audio data")
        return self


class PauseArgs(BaseModel):
    milliseconds: PositiveInt

    model_config = ConfigDict(extra="forbid", frozen=True)


def audio_items(value: Any) -> List[AudioArgs]:
    """Normalize the loose audio forms callers pass into a flat list.

    A bare string is text to speak, a mapping holds AudioArgs fields, and
    lists/tuples may nest any of these.
    """
    if value is None:
        return []
    if isinstance(value, AudioArgs):
        return [value]
    if isinstance(value, str):
        return [AudioArgs(tts=value)]
    if isinstance(value, Mapping):
        return [AudioArgs(**dict(value))]
    if isinstance(value, (list, tuple)):
        out: List[AudioArgs] = []
        for item in value:
            out.extend(audio_items(item))
        return out
    raise TypeError(f"unsupported audio value: {type(value).__name__}")


class ListenArgs(BaseModel):
    """Arguments for a single listen turn.

    Exactly one of `grammar` (inline) or `grammar_src` (external file) is
    required. `noinput`/`nomatch` are values returned instead of reprompting.
    """
    grammar: Optional[str] = None
    grammar_src: Optional[str] = None
    noinput: Optional[str] = None
    nomatch: Optional[str] = None
    timeout: Optional[PositiveInt] = None
    bargein: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_grammar(self) -> "ListenArgs":
        if bool(self.grammar) == bool(self.grammar_src):
            raise ValueError("must specify exactly one of 'grammar' and 'grammar_src'")
        return self


class RecordArgs(BaseModel):
    """Arguments for a recording turn; `grammar` decides what happens to the take."""
    grammar: str = Field(min_length=1)
    done_recording_audio: List[AudioArgs] = Field(
        default_factory=lambda: [AudioArgs(wav=DEFAULT_DONE_RECORDING_WAV)]
    )
    null_audio_word: str = ""
    replay_word: str = ""
    replay_pre_audio: List[AudioArgs] = Field(default_factory=list)
    replay_post_audio: List[AudioArgs] = Field(default_factory=list)
    help_word: str = ""
    help_audio: List[AudioArgs] = Field(default_factory=list)
    nomatch: List[AudioArgs] = Field(default_factory=lambda: [AudioArgs(tts="I'm sorry, I didn't get that.")])
    noinput: List[AudioArgs] = Field(default_factory=lambda: [AudioArgs(tts="I'm sorry, I didn't hear anything.")])
    maxtime: PositiveInt = 30
    finalsilence: PositiveInt = 2

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator(
        "done_recording_audio",
        "replay_pre_audio",
        "replay_post_audio",
        "help_audio",
        "nomatch",
        "noinput",
        mode="before",
    )
    @classmethod
    def _normalize_audio(cls, v: Any) -> List[AudioArgs]:
        return audio_items(v)
