"""VoiceXML documents served to the voice client.

Pure string rendering; nothing here performs I/O.
"""
from __future__ import annotations

from typing import Callable, List, Optional, Sequence
from xml.sax.saxutils import escape

from ..contracts.v1 import AudioArgs, ListenArgs, RecordArgs


RESULT_FIELD = "session.vxmllib.result"
RECORD_FIELD = "session.vxmllib.recordvalue"

CGI_HEADERS = "Cache-Control: no-cache\nContent-type: text/vxml\n\n"

_PROLOGUE = """<?xml version="1.0"?>
<!DOCTYPE vxml PUBLIC "-//Tellme Networks//Voice Markup Language 1.0//EN"
"http://resources.tellme.com/toolbox/vxml-tellme.dtd">

<vxml application="http://resources.tellme.com/lib/universals.vxml">
"""

_DEFAULT_NOINPUT = """
  <audio>Sorry, I did not hear anything.</audio>
  <reprompt/>
"""

_DEFAULT_NOMATCH = """<audio>What was that again?</audio>
<reprompt/>
"""


def escape_markup(text: str) -> str:
    return escape(str(text), {'"': "&quot;"})


def render_audio(args: AudioArgs, resolve_url: Optional[Callable[[str], str]] = None) -> str:
    if args.pause:
        return render_pause(args.pause)
    if args.wav:
        src = resolve_url(args.wav) if resolve_url else args.wav
        head = f'<audio src="{escape_markup(src)}">'
    elif args.data:
        head = f'<audio data="{args.data}">'
    else:
        head = "<audio>"
    return head + escape_markup(args.tts or "") + "</audio>"


def render_pause(milliseconds: int) -> str:
    return f"<pause>{int(milliseconds)}</pause>"


def render_prompt(fragments: Sequence[str]) -> str:
    if not fragments:
        return ""
    return "<prompt>" + "\n".join(fragments) + "</prompt>"


def cgi_response(body: str) -> bytes:
    """Full CGI output: headers plus document."""
    return (CGI_HEADERS + body).encode("utf-8")


def render_redirect_document(url: str) -> str:
    """Tell the voice client to continue the call at the worker's endpoint."""
    return (
        _PROLOGUE
        + f"""
<form><block>
  <goto next="{escape_markup(url)}"/>
</block></form>

</vxml>
"""
    )


def render_listen_document(
    fragments: Sequence[str],
    args: ListenArgs,
    endpoint_url: str,
    grammar_src: Optional[str] = None,
) -> str:
    myurl = escape_markup(endpoint_url)
    if args.grammar_src:
        grammar = f'<grammar src="{escape_markup(grammar_src or args.grammar_src)}"/>'
    else:
        grammar = f"<grammar><![CDATA[{args.grammar}]]></grammar>"

    noinput = _DEFAULT_NOINPUT
    if args.noinput:
        noinput = f'<goto next="{myurl}result={escape_markup(args.noinput)}"/>'
    nomatch = _DEFAULT_NOMATCH
    if args.nomatch:
        nomatch = f'<goto next="{myurl}result={escape_markup(args.nomatch)}"/>'

    attrs = ""
    if args.timeout:
        attrs += f' timeout="{int(args.timeout)}s"'
    if not args.bargein:
        attrs += ' bargein="false"'

    return (
        _PROLOGUE
        + f"""
<form id="top">
<field name="{RESULT_FIELD}"{attrs}>
{render_prompt(fragments)}
{grammar}
<noinput>
{noinput}
</noinput>
<default>
{nomatch}
</default>
<filled>
  <goto next="{myurl}result={{{RESULT_FIELD}}}"/>
</filled>
</field>
</form>
</vxml>
"""
    )


def _handler_list(tag: str, items: Sequence[str]) -> str:
    return "".join(f"<{tag}>{item}<reprompt/></{tag}>" for item in items)


def render_record_document(
    fragments: Sequence[str],
    args: RecordArgs,
    endpoint_url: str,
    render: Callable[[Sequence[AudioArgs]], str],
) -> str:
    """Record a take, then ask what to do with it.

    `render` turns a list of AudioArgs into markup (URLs already resolved).
    Replay, help and null-audio branches are only emitted for configured words.
    """
    myurl = escape_markup(endpoint_url)
    results: List[str] = []
    if args.replay_word:
        results.append(
            f"""<result name="{escape_markup(args.replay_word)}">
                    {render(args.replay_pre_audio)}
                    <audio data="{{{RECORD_FIELD}}}"/>
                    {render(args.replay_post_audio)}
                    <reprompt/>
                </result>"""
        )
    if args.null_audio_word:
        word = escape_markup(args.null_audio_word)
        results.append(
            f"""<result name="{word}">
                    <goto next="{myurl}result={word}&amp;"/>
                </result>"""
        )
    if args.help_word:
        results.append(
            f"""<result name="{escape_markup(args.help_word)}">
                    {render(args.help_audio)}
                    <reprompt/>
                </result>"""
        )
    nomatch = _handler_list("nomatch", [render([a]) for a in args.nomatch])
    noinput = _handler_list("noinput", [render([a]) for a in args.noinput])
    result_branches = "\n                ".join(results)

    return (
        _PROLOGUE
        + f"""
    <form id="Record">
        <record name="{RECORD_FIELD}" dtmfterm="true" finalsilence="{int(args.finalsilence)}s" maxtime="{int(args.maxtime)}s">
            {render_prompt(fragments)}
            <filled>
                {render(args.done_recording_audio)}
            </filled>
            <noinput>
                <goto next="#Abort"/>
            </noinput>
            <default>
                <goto next="#Abort"/>
            </default>
        </record>
        <field name="{RESULT_FIELD}">
            <prompt>
            </prompt>
            <grammar><![CDATA[{args.grammar}]]></grammar>
            {nomatch}
            {noinput}
            <filled>
                {result_branches}
                <submit next="{myurl}result={{{RESULT_FIELD}}}&amp;" method="post" namelist="{RECORD_FIELD}" />
            </filled>
            <default>
                <reprompt/>
            </default>
        </field>
    </form>
    <form id="Abort">
        <block>
            <goto next="{myurl}result=0&amp;"/>
        </block>
    </form>
</vxml>
"""
    )


def _final_document(fragments: Sequence[str], directive: str) -> str:
    outtext = "\n".join(fragments)
    return f"""<?xml version="1.0" ?>
<vxml>
 <form>
  <block>
   {outtext}
   {directive}
  </block>
 </form>
</vxml>
"""


def render_goto_document(fragments: Sequence[str], url: str) -> str:
    return _final_document(fragments, f'<goto next="{escape_markup(url)}"/>')


def render_disconnect_document(fragments: Sequence[str]) -> str:
    return _final_document(fragments, "<disconnect/>")


def render_error_document(message: str) -> str:
    """Spoken error for failures the voice client cannot render natively."""
    return f"<vxml><form><block><audio>{escape_markup(message)}</audio></block></form></vxml>\n"
