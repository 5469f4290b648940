from .adapter.mcp_server import main

main()
