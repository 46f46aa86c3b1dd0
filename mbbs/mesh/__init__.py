"""MBBS Mesh Module - Meshtastic transport and decoded events."""
