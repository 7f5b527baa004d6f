"""Client-side session core: events, transcripts, tools and lifecycle."""
