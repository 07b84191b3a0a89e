"""Shared constants for the lily feed controller and status display."""

# Comparator range: 0 while producing, 1..15 while cooling down
MAX_LEVEL = 15

# Cooldown seconds per comparator level (L*20s = cooldown)
UNIT_SECONDS = 20

# Timing (seconds)
EXTRA_BUFFER_SECONDS = 1.0    # Lag buffer added to every schedule
RETRY_DELAY_SECONDS = 5.0     # Re-arm delay when a feed is not confirmed
STATUS_PERIOD = 1.0           # Max seconds between level heartbeats
PULSE_SECONDS = 0.4           # Actuator pulse length
TICK_SECONDS = 0.25           # Main loop poll period
CONFIRM_WINDOW_SECONDS = 4.0  # How long to watch for L>0 -> 0 after a pulse
CONFIRM_POLL_SECONDS = 0.2    # Sensor poll interval inside the window

# Status protocol (wire contract, do not change without a compatibility plan)
STATUS_CHANNEL = "lily-status"
STATUS_KIND = "lily_status"
BROADCAST_PORT = 47615
BROADCAST_ADDRESS = "255.255.255.255"

# Display side
RECEIVE_TIMEOUT = 0.5       # Bounded wait per receive
REDRAW_INTERVAL = 0.5       # Repaint period
STALE_AFTER_SECONDS = 10.0  # Record shown as STALE past this age
