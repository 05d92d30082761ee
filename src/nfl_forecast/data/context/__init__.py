"""Pre-game context: rolling strength, QB form, injuries, venue, Elo, market, weather."""
