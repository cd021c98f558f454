"""Material flow recording and inter-stage transfer tracking."""
