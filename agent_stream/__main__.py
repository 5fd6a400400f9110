from agent_stream.main import main

main()
