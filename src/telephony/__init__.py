"""Telephony components for streaming phone calls.

Twilio places the call and opens a bidirectional Media Stream WebSocket; every
call gets its own session and orchestrator that relays caller audio to
transcription and assistant audio back onto the stream.
"""
