from search_relay.main import main

main()
