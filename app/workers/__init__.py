"""
Command-line entry points.

- heating_cli: run a room session, show its status or sweep stale actuator
  state without starting the web server
"""
