"""Domain types shared by the database layer, the core rules and the bot."""
