from rad_security_mcp import main

main()
