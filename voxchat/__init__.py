"""
voxchat - Voice-driven chat front end for hosted generative AI models

This is the root package for voxchat, containing shared utilities and modules
for relaying speech or typed text to a Gemini chat model and speaking the replies.

Core modules:
- audio: Wake chime synthesis and sample playback
- config_persist: Debounced persistence of runtime preferences to voxchat.conf
- utils: Parsing and async helpers
- voice: The voice assistant (wake phrase, listening modes, speech output, chat)
"""

__version__ = "0.4.0"
