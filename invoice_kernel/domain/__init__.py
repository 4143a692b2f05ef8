"""Pure domain values for the invoice kernel: money, clock, workflow."""
