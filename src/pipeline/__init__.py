"""
Captioning Pipeline Module

This module orchestrates the captioning pipeline that:
1. Receives an uploaded video and re-encodes it to a canonical MP4
2. Extracts mono 16 kHz audio with ffmpeg
3. Transcribes the audio with a hosted speech-to-text API
4. Renders the captions onto the video with Remotion
"""

__version__ = "1.0.0"
