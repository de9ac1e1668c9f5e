from drive_indexer.main import main

main()
