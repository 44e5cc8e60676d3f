from audiotune.cli import main

main()
