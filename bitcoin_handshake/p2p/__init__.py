"""Bitcoin P2P wire codec, handshake state machine and orchestrator."""
