"""Shared Hypothesis configuration for the test suite."""

from hypothesis import HealthCheck, settings

# Hypothesis builds its Unicode character table the first time st.text() is
# drawn on a fresh machine; that one-off cost otherwise trips too_slow.
settings.register_profile("default", suppress_health_check=[HealthCheck.too_slow])
settings.load_profile("default")
