"""GMR Sync - Turn save synchronizer for Civilization V multiplayer games.

This package keeps the local hotseat save directory and the Giant
Multiplayer Robot relay in step:
    - Downloads the latest save of every game where it is the player's turn
    - Watches the save directory for the turn file the game writes
    - Works out which game a new turn file belongs to by comparing saves
    - Uploads the finished turn back to the relay

Package Structure:
    app: Headless application entry point and timer loop
    config: Settings, paths and credential encryption
    core: Save parsing, turn matching, transfers and the sync engine
    api: Relay HTTP client and JSON models

Quick Start:
    Run from command line::

        GMR_AUTH_KEY=... gmr-sync --debug

    Or programmatically::

        from gmr_sync.app import main
        main()

Configuration:
    - Config file: <config dir>/GmrSync/configuration.xml
    - Log file: <config dir>/GmrSync/gmr_sync.log
    - State store: <data dir>/GmrSync/store/
"""

__version__ = "0.3.0"
__app_name__ = "GMR Sync"
