"""All magic numbers and configuration constants."""

SETTLE_DELAY_MS = 800               # ms after the last segment before the run is complete
SAMPLE_RATE = 44100                 # output sample rate for cues and speech
CUE_GAIN = 0.9                      # master gain applied to synthesized cues
OUTPUT_BLOCKSIZE = 512              # frames per sounddevice callback
SPEECH_VOICE = "hi-IN-MadhurNeural"          # single fixed voice locale (hi-IN)
SPEECH_RATE = "-20%"                         # 0.8x speaking rate
SPEECH_PITCH = "-25Hz"                       # lowered pitch for the narrator
SPEECH_VOLUME = "-5%"                        # 0.95x volume
SPEECH_TAG = "speech"                        # mixer tag for the active utterance
TTS_RETRY_COUNT = 3                 # max retries per offline speech clip
TTS_RETRY_BASE_DELAY = 1.0          # seconds, base delay for exponential backoff
LIVE_TTS_ATTEMPTS = 1               # live speech never retries; a late line is worse than none
OUTPUT_BITRATE = "192k"             # MP3 output bitrate for offline renders
RENDER_TAIL_MS = 1500               # silence kept after the settle delay in offline renders
PROGRESS_BAR_WIDTH = 30             # cells in the console progress bar
VERSION = "0.1.0"
