from ai_chain.cli import main

main()
