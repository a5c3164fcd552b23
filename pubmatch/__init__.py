"""Check-in, wristband and live matching tool for a pub night."""
