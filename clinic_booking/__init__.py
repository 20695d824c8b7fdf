"""Voice appointment booking for clinics.

A Twilio Voice webhook drives a per-call conversation FSM that collects
the caller's name, department, doctor, date and time, then books the
appointment through a directory/booking backend.
"""
